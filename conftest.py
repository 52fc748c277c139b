import pytest

from medvault import build_deployment
from medvault.config import Settings
from medvault.subject import new_subject

TEST_SECRET = "test-encryption-secret"


@pytest.fixture
def owner():
    return new_subject()


@pytest.fixture
def doctor_id():
    return new_subject()


@pytest.fixture
def patient_id():
    return new_subject()


@pytest.fixture
def settings():
    return Settings(encryption_secret=TEST_SECRET)


@pytest.fixture
def make_deployment(owner, settings):
    """Async factory so every component is created inside the test's loop."""

    async def _make(**kwargs):
        kwargs.setdefault("settings", settings)
        return await build_deployment(owner, **kwargs)

    return _make


@pytest.fixture
def enroll(owner):
    async def _enroll(deployment, doctor_id=None, patient_id=None):
        if doctor_id:
            await deployment.registry.register_doctor(
                doctor_id, "Dr. Meredith Grey", "Cardiology", "LIC-0001", caller=owner
            )
        if patient_id:
            await deployment.registry.register_patient(
                patient_id, "Alex Doe", "1990-01-01", "555-0100", "555-0199", caller=owner
            )

    return _enroll
