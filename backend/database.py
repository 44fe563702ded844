import os
from dotenv import load_dotenv
from threading import Lock

from sqlalchemy import create_engine, inspect, text
from sqlalchemy.orm import declarative_base, sessionmaker


load_dotenv()
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./scheduling.db")

engine = create_engine(DATABASE_URL)

SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine,
)

Base = declarative_base()

_schema_lock = Lock()
_availability_schema_checked = False
_slot_schema_checked = False
_appointment_schema_checked = False


def _apply_migration_steps(table_name: str, migration_steps: list[tuple[str, str]], indexes: list[str]) -> None:
    inspector = inspect(engine)
    existing_columns = {column['name'] for column in inspector.get_columns(table_name)}

    with engine.begin() as connection:
        for column_name, statement in migration_steps:
            if column_name not in existing_columns:
                connection.execute(text(statement))
        for statement in indexes:
            connection.execute(text(statement))


def ensure_availability_schema() -> None:
    global _availability_schema_checked

    if _availability_schema_checked:
        return

    with _schema_lock:
        if _availability_schema_checked:
            return

        if 'professional_availability' not in inspect(engine).get_table_names():
            _availability_schema_checked = True
            return

        _apply_migration_steps(
            'professional_availability',
            [
                ('slot_duration_minutes', 'ALTER TABLE professional_availability ADD COLUMN slot_duration_minutes INTEGER'),
                ('break_start', 'ALTER TABLE professional_availability ADD COLUMN break_start TIME'),
                ('break_end', 'ALTER TABLE professional_availability ADD COLUMN break_end TIME'),
                ('service_id', 'ALTER TABLE professional_availability ADD COLUMN service_id VARCHAR'),
            ],
            [
                'CREATE INDEX IF NOT EXISTS idx_professional_availability_weekday '
                'ON professional_availability(professional_id, day_of_week)',
                'CREATE INDEX IF NOT EXISTS idx_professional_availability_date '
                'ON professional_availability(professional_id, date)',
            ],
        )

        _availability_schema_checked = True


def ensure_slot_schema() -> None:
    global _slot_schema_checked

    if _slot_schema_checked:
        return

    with _schema_lock:
        if _slot_schema_checked:
            return

        if 'availability_slots' not in inspect(engine).get_table_names():
            _slot_schema_checked = True
            return

        _apply_migration_steps(
            'availability_slots',
            [
                ('rule_id', 'ALTER TABLE availability_slots ADD COLUMN rule_id INTEGER'),
                ('service_id', 'ALTER TABLE availability_slots ADD COLUMN service_id VARCHAR'),
            ],
            [
                'CREATE UNIQUE INDEX IF NOT EXISTS uq_availability_slots_professional_date_start '
                'ON availability_slots(professional_id, date, start_time)',
                'CREATE INDEX IF NOT EXISTS idx_availability_slots_rule '
                'ON availability_slots(rule_id, date)',
            ],
        )

        _slot_schema_checked = True


def ensure_appointment_schema() -> None:
    global _appointment_schema_checked

    if _appointment_schema_checked:
        return

    with _schema_lock:
        if _appointment_schema_checked:
            return

        if 'appointments' not in inspect(engine).get_table_names():
            _appointment_schema_checked = True
            return

        _apply_migration_steps(
            'appointments',
            [
                ('slot_id', 'ALTER TABLE appointments ADD COLUMN slot_id INTEGER'),
                ('duration_minutes', 'ALTER TABLE appointments ADD COLUMN duration_minutes INTEGER'),
            ],
            [
                'CREATE INDEX IF NOT EXISTS idx_appointments_slot_status ON appointments(slot_id, status)',
                'CREATE INDEX IF NOT EXISTS idx_appointments_professional_scheduled '
                'ON appointments(professional_id, scheduled_at)',
            ],
        )

        _appointment_schema_checked = True
