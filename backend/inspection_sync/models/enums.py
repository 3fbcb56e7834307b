"""All enum types for the inspection sync data model."""

import enum


# --- Report Enums ---

class ReportStatus(str, enum.Enum):
    DRAFT = "draft"
    SUBMITTED = "submitted"


class Severity(str, enum.Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class MediaKind(str, enum.Enum):
    PHOTO = "photo"
    VIDEO = "video"


# --- Template Enums ---

class ItemType(str, enum.Enum):
    PASS_FAIL = "pass_fail"
    YES_NO = "yes_no"
    CONDITION = "condition"
    SEVERITY = "severity"
    TEXT = "text"
    NUMBER = "number"
    SELECT = "select"
    MULTI_SELECT = "multi_select"
    CHECKLIST = "checklist"
    PHOTO = "photo"
    SIGNATURE = "signature"
    DATE = "date"
    TIME = "time"
    DATETIME = "datetime"
    RATING = "rating"
    COUNTER = "counter"
    MEASUREMENT = "measurement"
    TEMPERATURE = "temperature"
    METER_READING = "meter_reading"
    CURRENCY = "currency"
    GPS_LOCATION = "gps_location"
    BARCODE_SCAN = "barcode_scan"
    PERSON_PICKER = "person_picker"
    COMPOSITE_ADDRESS = "composite_address"
    COMPOSITE_CONTACT = "composite_contact"
    INSTRUCTION = "instruction"


class PhotoRule(str, enum.Enum):
    NEVER = "never"
    ON_FAIL = "on_fail"
    ALWAYS = "always"
    ON_PASS = "on_pass"
    ON_YES = "on_yes"
    ON_NO = "on_no"


# --- Sync Enums ---

class MutationKind(str, enum.Enum):
    RESPONSE = "response"


class ConflictStrategy(str, enum.Enum):
    LOCAL_WINS = "local-wins"
    SERVER_WINS = "server-wins"
    NEWEST_WINS = "newest-wins"


class FieldWinner(str, enum.Enum):
    LOCAL = "local"
    SERVER = "server"
    SAME = "same"


# --- Session Enums ---

class SessionPhase(str, enum.Enum):
    IDLE = "idle"
    LOADING = "loading"
    READY = "ready"
    SAVING = "saving"
    SUBMITTING = "submitting"
    SUBMITTED = "submitted"
