"""Enum definitions for application constants."""

from enum import Enum


class ContactType(str, Enum):
    """People who receive a PIN when a verification request opens."""

    BENEFICIARY = "beneficiary"
    EXECUTOR = "executor"
    TRUSTED = "trusted"


class UnlockMode(str, Enum):
    """How an executor unlocks the will. Only the ordered PIN set is supported."""

    PIN = "pin"


class NotificationChannel(str, Enum):
    EMAIL = "email"
    SMS = "sms"
    PUSH = "push"


class StatusCheckResponse(str, Enum):
    """A contact's answer to "is this user still alive?"."""

    ALIVE = "alive"
    DECEASED = "deceased"


class CheckinStatus(str, Enum):
    ALIVE = "alive"
    OVERDUE = "overdue"


class VerificationStatus(str, Enum):
    """
    Lifecycle of one overdue episode.

    pending -> pins_sent -> verified -> completed -> will_unlocked
    expired, failed and canceled are terminal side exits. A request is
    canceled when the user (or a contact on their behalf) confirms they
    are alive.
    """

    PENDING = "pending"
    PINS_SENT = "pins_sent"
    VERIFIED = "verified"
    COMPLETED = "completed"
    WILL_UNLOCKED = "will_unlocked"
    EXPIRED = "expired"
    FAILED = "failed"
    CANCELED = "canceled"

    @classmethod
    def open_values(cls) -> tuple[str, ...]:
        """Statuses that block a new request for the same user."""
        return (cls.PENDING.value, cls.PINS_SENT.value, cls.VERIFIED.value)


class TriggerReason(str, Enum):
    MISSED_CHECKINS = "missed_checkins"
    MANUAL = "manual"
    TEST = "test"
    CONTACT_REPORT = "contact_report"


class AuditAction(str, Enum):
    """Append-only verification log actions."""

    SETTINGS_UPDATED = "settings_updated"
    CHECK_IN = "check_in"
    CHECK_IN_OVERDUE = "check_in_overdue"
    VERIFICATION_TRIGGERED = "verification_triggered"
    VERIFICATION_FAILED = "verification_failed"
    VERIFICATION_EXPIRED = "verification_expired"
    VERIFICATION_CANCELED = "verification_canceled"
    PINS_GENERATED = "unlock_pins_generated"
    PIN_EMAIL_SENT = "executor_pin_sent"
    PIN_SUBMISSION_FAILED = "pin_submission_failed"
    VERIFICATION_VERIFIED = "verification_verified"
    WILL_UNLOCKED = "will_unlocked"
    DOCUMENT_ACCESSED = "document_accessed"
    ARCHIVE_DOWNLOADED = "archive_downloaded"
    TEST_DATA_CLEANED = "test_data_cleaned"
    STATUS_CHECK_SENT = "status_check_sent"
    STATUS_CHECK_ALIVE = "status_check_alive"
    STATUS_CHECK_DECEASED = "status_check_deceased"


class JobType(str, Enum):
    """Types of background jobs."""

    DISTRIBUTE_PINS = "distribute_pins"
    CHECKIN_REMINDER = "checkin_reminder"
    SEND_STATUS_CHECK = "send_status_check"


class JobStatus(str, Enum):
    """Status of background jobs."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class WillStatus(str, Enum):
    DRAFT = "draft"
    ACTIVE = "active"
