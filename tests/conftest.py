# conftest.py
import os

os.environ["MY_API_KEYS"] = "test-key"
os.environ["DATABASE_URL"] = "sqlite://"

import pytest
from httpx import AsyncClient, ASGITransport
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from dental_billing.main import app
from dental_billing.clinic_database import Base, get_db
from dental_billing.dependencies import get_admin_fee, get_directory
from dental_billing.model import DoctorRecord, PatientRecord, ProductRecord

SQLALCHEMY_DATABASE_URL = "sqlite://"
engine = create_engine(SQLALCHEMY_DATABASE_URL, connect_args={"check_same_thread": False}, poolclass=StaticPool)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

HEADERS = {"X-API-Key": "test-key", "X-Operator-Id": "frontdesk"}
ADMIN_FEE = 25000


class FakeDirectory:
    """In-process stand-in for the patient/doctor/product directory."""

    def __init__(self):
        self.patients = {
            "P001": PatientRecord(id="P001", name="Siti Rahma", medicalRecordNumber="RM-0001"),
            "P002": PatientRecord(id="P002", name="Budi Santoso", medicalRecordNumber="RM-0002"),
        }
        self.doctors = {
            "D001": DoctorRecord(id="D001", name="drg. Andi Wijaya", specialization="Orthodontics"),
            "D002": DoctorRecord(id="D002", name="drg. Maya Lestari", specialization="Endodontics"),
        }
        self.products = [
            ProductRecord(id="T1", name="Scaling", price=600000, category="treatment"),
            ProductRecord(id="M1", name="Amoxicillin", price=50000, category="medication", stock=40),
        ]

    async def get_patient(self, patient_id):
        return self.patients.get(patient_id)

    async def get_doctor(self, doctor_id):
        return self.doctors.get(doctor_id)

    async def list_products(self, category=None):
        return [p for p in self.products if category is None or p.category == category]


fake_directory = FakeDirectory()


def override_get_db():
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()


app.dependency_overrides[get_db] = override_get_db
app.dependency_overrides[get_directory] = lambda: fake_directory
app.dependency_overrides[get_admin_fee] = lambda: ADMIN_FEE


@pytest.fixture(autouse=True)
def reset_database():
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def db_session():
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture
def session_factory():
    return TestingSessionLocal


@pytest.fixture(scope="module")
def anyio_backend():
    return "asyncio"


@pytest.fixture
async def client(anyio_backend):
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test", headers=HEADERS) as ac:
        yield ac
