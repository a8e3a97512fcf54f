"""
Audit logging for reconciliation decisions.
"""

import json
from collections import Counter
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

import structlog

from ..models import AuditAction, AuditEntry, ReconciliationScope

logger = structlog.get_logger()


class AuditLogger:
    """
    Decision trail of one reconciliation run.

    Entries are kept in memory for the report; ``export_to_file`` writes
    them out as JSON when the run is configured to keep an audit file.
    """

    def __init__(self, scope: ReconciliationScope):
        self.scope = scope
        self.entries: List[AuditEntry] = []

    def log(self, entry: AuditEntry) -> None:
        """Add an audit entry."""
        self.entries.append(entry)

        logger.debug(
            entry.message,
            action=entry.action.value,
            bank_code=self.scope.bank_code,
            transaction_ids=entry.transaction_ids,
            success=entry.success,
        )

    def record(
        self,
        action: AuditAction,
        message: str,
        transaction_ids: Optional[List[int]] = None,
        success: bool = True,
        error_message: Optional[str] = None,
        **details,
    ) -> AuditEntry:
        """Build and log an entry in one call."""
        entry = AuditEntry(
            action=action,
            message=message,
            transaction_ids=transaction_ids or [],
            details=details,
            success=success,
            error_message=error_message,
        )
        self.log(entry)
        return entry

    def export_to_file(self, output_dir: Path) -> Path:
        """
        Write the trail to ``output_dir`` as one JSON document.

        The file is named after the scope and the export time, so runs over
        the same scope never overwrite each other.
        """
        stamp = datetime.utcnow().strftime("%Y%m%dT%H%M%S%f")
        name = f"audit_{self.scope.bank_code}_{self.scope.agency_code or 'all'}_{stamp}.json"
        output_dir.mkdir(parents=True, exist_ok=True)
        output_path = output_dir / name

        data = {
            "scope": self.scope.to_dict(),
            "exported_at": datetime.utcnow().isoformat(),
            "summary": self.summary(),
            "entries": [
                {
                    "id": e.id,
                    "timestamp": e.timestamp.isoformat(),
                    "action": e.action.value,
                    "transaction_ids": e.transaction_ids,
                    "message": e.message,
                    "details": e.details,
                    "success": e.success,
                    "error_message": e.error_message,
                }
                for e in self.entries
            ],
        }

        with open(output_path, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2, ensure_ascii=False, default=str)

        logger.info("Audit log exported", path=str(output_path), entries=len(self.entries))
        return output_path

    def summary(self) -> Dict[str, Any]:
        """Entry counts, overall and per action (actions sorted by name)."""
        action_counts = Counter(e.action.value for e in self.entries)
        return {
            "total_entries": len(self.entries),
            "success_count": sum(1 for e in self.entries if e.success),
            "error_count": sum(1 for e in self.entries if not e.success),
            "action_counts": dict(sorted(action_counts.items())),
        }
