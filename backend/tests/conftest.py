from pathlib import Path
import sys

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))
sys.path.insert(0, str(Path(__file__).resolve().parent))

import pytest

from auth.passwords import hash_password
from config.settings import EngineConfig
from fakes import (
    FakeClock,
    InMemoryDirectoryStore,
    InMemorySessionStore,
    OFFICE_LAT,
    OFFICE_LON,
    METERS_PER_DEGREE_LAT,
    PASSWORD,
    T0,
)
from lifecycle.engine import SessionLifecycleEngine
from schemas.directory import Device, Location, Role, User


@pytest.fixture(scope="session")
def password_hash():
    # Low cost factor keeps the suite fast; production uses the default.
    return hash_password(PASSWORD, rounds=4)


@pytest.fixture
def clock():
    return FakeClock(T0)


@pytest.fixture
def config():
    return EngineConfig()


@pytest.fixture
def sessions():
    return InMemorySessionStore()


@pytest.fixture
def directory(password_hash):
    """Company "acme": HQ fence, a remote annex 2 km north, three users.

    - asha:  employee on dev-1, allocated to HQ
    - ravi:  employee on dev-2, may use any company location
    - admin: company admin, no device, never fenced
    """
    d = InMemoryDirectoryStore()
    d.locations["loc-hq"] = Location(
        location_id="loc-hq", company_id="acme", name="HQ",
        coordinates=[OFFICE_LON, OFFICE_LAT], radius_meters=100,
    )
    d.locations["loc-annex"] = Location(
        location_id="loc-annex", company_id="acme", name="Annex",
        coordinates=[OFFICE_LON, OFFICE_LAT + 2000 / METERS_PER_DEGREE_LAT], radius_meters=150,
    )
    d.devices["dev-1"] = Device(device_id="dev-1", company_id="acme", assigned_to="u-asha", last_seen=T0)
    d.devices["dev-2"] = Device(device_id="dev-2", company_id="acme", assigned_to="u-ravi", last_seen=T0)
    d.users["u-asha"] = User(
        user_id="u-asha", company_id="acme", username="asha", password_hash=password_hash,
        assigned_device_id="dev-1", allocated_location_id="loc-hq",
    )
    d.users["u-ravi"] = User(
        user_id="u-ravi", company_id="acme", username="ravi", password_hash=password_hash,
        assigned_device_id="dev-2",
    )
    d.users["u-admin"] = User(
        user_id="u-admin", company_id="acme", username="admin", password_hash=password_hash,
        role=Role.ADMIN,
    )
    return d


@pytest.fixture
def engine(config, sessions, directory, clock):
    return SessionLifecycleEngine(config, sessions, directory, clock=clock)
