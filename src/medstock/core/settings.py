"""Environment settings - loads store endpoints and SMART credentials from .env.

Application-level constants that never change per deployment (FHIR systems
used for identifiers and shadow fields) live in medstock.fhir.resources.
"""

from pathlib import Path
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict

# Project root: src/medstock/core/settings.py -> src/medstock/core/ -> src/medstock/ -> src/ -> project_root/
PROJECT_ROOT = Path(__file__).parent.parent.parent.parent
ENV_FILE_PATH = PROJECT_ROOT / ".env"


class EnvSettings(BaseSettings):
    """Environment variables for the FHIR store and SMART-on-FHIR session."""

    model_config = SettingsConfigDict(
        env_file=str(ENV_FILE_PATH),
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ============================================
    # FHIR Store
    # ============================================
    fhir_base_url: str = "https://hapi.fhir.org/baseR4"
    fhir_timeout: float = 30.0

    # ============================================
    # Application Tag
    # ============================================
    # Attached to every resource this app creates; scopes searches on shared servers
    app_tag_system: str = "urn:demo:app"
    app_tag_code: str = "demo-medical-stock"
    app_tag_display: str = "Medical Device Stock"

    # ============================================
    # SMART-on-FHIR
    # ============================================
    smart_client_id: str = "fhir-scan-stock"
    smart_scope: str = "launch/patient patient/*.read patient/*.write openid fhirUser"
    # Filled in after an external authorization handshake
    smart_server_url: str = ""
    smart_access_token: str = ""
    smart_patient_id: str = ""

    # ============================================
    # Logging
    # ============================================
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"


settings = EnvSettings()
