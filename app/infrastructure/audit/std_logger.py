import json
import logging
from datetime import datetime, timezone
from typing import Optional, Dict, Any

from ...application.ports.audit_logger import AuditLogger


class StdAuditLogger(AuditLogger):
    def __init__(self) -> None:
        self._logger = logging.getLogger(__name__)

    def log(self, action: str, user_id: Optional[str], target_id: Optional[str] = None, success: bool = True, details: Optional[Dict[str, Any]] = None) -> None:
        entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "action": action,
            "user_id": user_id,
            "target_id": target_id,
            "success": success,
            "details": details or {},
        }
        level = logging.INFO if success else logging.WARNING
        self._logger.log(level, f"AUDIT: {json.dumps(entry, default=str)}")
