# tests/conftest.py
import asyncio
import sys
from unittest.mock import AsyncMock

import pytest

from classroll.backend.models.db_models import Student
from tests.fakes import FakeStore, FakeTokenStore

# This is the crucial fix for Windows asyncio issues with pytest.
if sys.platform == "win32":
    asyncio.set_event_loop_policy(asyncio.WindowsSelectorEventLoopPolicy())


@pytest.fixture
def store() -> FakeStore:
    fake = FakeStore()
    for i in (1, 2, 3):
        fake.add_student(Student(
            student_id=f"S00{i}", user_id=f"S00{i}", full_name=f"Student {i}", parent_ids=[f"P00{i}"]
        ))
    return fake


@pytest.fixture
def tokens() -> FakeTokenStore:
    return FakeTokenStore()


@pytest.fixture
def notification_service() -> AsyncMock:
    service = AsyncMock()
    service.send_class_reminder.return_value = 4
    service.send_check_in_available.return_value = 3
    service.send_attendance_confirmation.return_value = 1
    service.send_absence_alert.return_value = 1
    return service
