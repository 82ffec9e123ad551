# clinic/main.py
#
# This is the main entry point for the FastAPI application.
# It creates the FastAPI app instance, configures logging and includes the
# modular routers.
#
# The `handler` function is the entry point for AWS Lambda.

import logging

from fastapi import FastAPI
from mangum import Mangum

from .config import get_settings
from .routers import accounting, admin, appointments, auth, consultations, dosage, medicines, notifications, patients, users

settings = get_settings()

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

app = FastAPI(
    title="Asociación Humana HIS Backend API",
    description="Clinic management API: agenda, consultations, patients, documents and administration."
)

# Include the routers
app.include_router(auth.router)
app.include_router(users.router)
app.include_router(patients.router)
app.include_router(appointments.router)
app.include_router(consultations.router)
app.include_router(notifications.router)
app.include_router(admin.router)
app.include_router(dosage.router)
app.include_router(medicines.router)
app.include_router(accounting.router)


@app.get("/health", tags=["Health Check"])
def health_check():
    """A simple endpoint to confirm the API is running."""
    return {"status": "ok"}


# This handler is the entry point for AWS Lambda
handler = Mangum(app, lifespan="off")
