# ============================================================
# app.py : Point d'entrée du service Laundry
# ------------------------------------------------------------
# Ce module initialise l'application FastAPI :
#   - configure les logs
#   - crée les tables dans la base de données au démarrage
#   - enregistre le handler des erreurs métier
#   - monte les routes (réservations, machines, foyers,
#     utilisateurs, messagerie)
# ============================================================
from fastapi import FastAPI

import config
from api import router as bookings_router
from database import init_db
from errors import register_handlers
from hostels import router as hostels_router
from machines import router as machines_router
from messages import router as messages_router
from users import router as users_router

config.configure_logging()


app = FastAPI(title="Laundry Booking Service")
register_handlers(app)


# Exécuté automatiquement par FastAPI au lancement du conteneur :
# crée les tables SQL si elles n'existent pas encore.
@app.on_event("startup")
def start():
    init_db()


app.include_router(bookings_router)
app.include_router(machines_router)
app.include_router(hostels_router)
app.include_router(users_router)
app.include_router(messages_router)


@app.get("/health")
def health():
    return {"ok": True}
