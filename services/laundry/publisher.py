# ============================================================
# publisher.py : Émission d'événements RabbitMQ
# ------------------------------------------------------------
# Après chaque transition validée en base, le service informe les
# autres consommateurs (BookingCreated, BookingCompleted,
# BookingCancelled, MachineStatusChanged, MessageSent).
# La publication est "best effort" : la transaction est déjà
# validée, une panne du broker ne doit pas faire échouer la requête.
# ============================================================
import json
import logging

import pika
from pika.exceptions import AMQPError

import config

logger = logging.getLogger(__name__)

EXCHANGE = "events"


# RABBITMQ_HOST vide (tests, poste local) : on ne fait que tracer.
# Sinon une connexion courte par événement ; une erreur AMQP est
# journalisée en warning et l'événement est perdu, sans exception
# pour l'appelant.

def publish_event(event_type: str, payload: dict):
    if not config.RABBITMQ_HOST:
        logger.debug("[event] %s %s (publication disabled)", event_type, payload)
        return
    message = {"type": event_type, "payload": payload}
    try:
        conn = pika.BlockingConnection(pika.ConnectionParameters(host=config.RABBITMQ_HOST, heartbeat=60))
        try:
            ch = conn.channel()
            # durable=True pour survivre aux redémarrages RabbitMQ
            ch.exchange_declare(exchange=EXCHANGE, exchange_type="fanout", durable=True)
            ch.basic_publish(exchange=EXCHANGE, routing_key="", body=json.dumps(message, default=str))
        finally:
            conn.close()
    except AMQPError as e:
        logger.warning("[event] %s not published: %r", event_type, e)
        return
    logger.info("[event] %s %s", event_type, payload)
