from datetime import datetime
from sqlalchemy import (
    Column, Integer, Text, Float, Boolean, ForeignKey, Index,
    DateTime,
)
from sqlalchemy.orm import relationship
from db.database import Base


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    username = Column(Text, unique=True, nullable=False)
    username_normalized = Column(Text, unique=True, nullable=False)
    password_hash = Column(Text, nullable=False)
    display_name = Column(Text, nullable=False)
    token_version = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    episodes = relationship("Episode", back_populates="user", cascade="all, delete-orphan")
    medications = relationship("Medication", back_populates="user", cascade="all, delete-orphan")
    medication_logs = relationship("MedicationLog", back_populates="user", cascade="all, delete-orphan")
    triggers = relationship("Trigger", back_populates="user", cascade="all, delete-orphan")
    device_readings = relationship("DeviceReading", back_populates="user", cascade="all, delete-orphan")
    medical_reports = relationship("MedicalReport", back_populates="user", cascade="all, delete-orphan")


class Episode(Base):
    __tablename__ = "migraine_episodes"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    start_time = Column(DateTime, nullable=False)
    end_time = Column(DateTime)  # NULL while the episode is open
    intensity = Column(Integer, nullable=False)  # 1-10 scale
    symptoms = Column(Text)  # JSON array
    triggers = Column(Text)  # JSON array of trigger names
    notes = Column(Text)
    is_emergency = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, default=datetime.utcnow)

    user = relationship("User", back_populates="episodes")
    medication_logs = relationship("MedicationLog", back_populates="episode", passive_deletes=True)


class Medication(Base):
    __tablename__ = "medications"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    name = Column(Text, nullable=False)
    dosage = Column(Text, nullable=False)
    frequency = Column(Text, nullable=False)  # daily, as-needed, etc.
    side_effects = Column(Text)  # JSON array
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    user = relationship("User", back_populates="medications")
    logs = relationship("MedicationLog", back_populates="medication", passive_deletes=True)


class MedicationLog(Base):
    __tablename__ = "medication_logs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    # Weak references: a removed referent nulls the column, the log stays.
    medication_id = Column(Integer, ForeignKey("medications.id", ondelete="SET NULL"), nullable=True)
    episode_id = Column(Integer, ForeignKey("migraine_episodes.id", ondelete="SET NULL"), nullable=True)
    taken_at = Column(DateTime, nullable=False)
    effectiveness = Column(Integer)  # 1-10 scale
    notes = Column(Text)
    created_at = Column(DateTime, default=datetime.utcnow)

    user = relationship("User", back_populates="medication_logs")
    medication = relationship("Medication", back_populates="logs")
    episode = relationship("Episode", back_populates="medication_logs")


class Trigger(Base):
    __tablename__ = "triggers"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    name = Column(Text, nullable=False)
    category = Column(Text, nullable=False)  # sleep, stress, food, weather, etc.
    correlation_score = Column(Float)  # 0-1 scale
    frequency = Column(Integer, nullable=False, default=0)
    last_occurrence = Column(DateTime)
    created_at = Column(DateTime, default=datetime.utcnow)

    user = relationship("User", back_populates="triggers")


class DeviceReading(Base):
    __tablename__ = "device_data"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    heart_rate = Column(Integer)
    stress_level = Column(Text)  # low | medium | high
    sleep_quality = Column(Text)  # poor | fair | good | excellent
    timestamp = Column(DateTime, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)

    user = relationship("User", back_populates="device_readings")


class MedicalReport(Base):
    __tablename__ = "medical_reports"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    report_type = Column(Text, nullable=False)  # weekly | monthly | custom
    start_date = Column(Text, nullable=False)  # DATE as text for SQLite
    end_date = Column(Text, nullable=False)
    report_data = Column(Text, nullable=False)  # JSON object
    generated_at = Column(DateTime, default=datetime.utcnow)

    user = relationship("User", back_populates="medical_reports")


# Indexes
Index("idx_users_username_normalized", User.username_normalized, unique=True)
Index("idx_episodes_user_start", Episode.user_id, Episode.start_time)
Index("idx_medications_user_active", Medication.user_id, Medication.is_active)
Index("idx_medication_logs_user_taken", MedicationLog.user_id, MedicationLog.taken_at)
Index("idx_medication_logs_medication", MedicationLog.medication_id, MedicationLog.taken_at)
Index("idx_triggers_user_frequency", Trigger.user_id, Trigger.frequency)
Index("idx_device_data_user_timestamp", DeviceReading.user_id, DeviceReading.timestamp)
Index("idx_medical_reports_user_generated", MedicalReport.user_id, MedicalReport.generated_at)
