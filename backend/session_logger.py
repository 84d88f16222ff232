"""
Backend session logger: tracks transcripts, assessment changes, escalation, and generates reports.
"""

import json
import os
import time
from datetime import datetime
from pathlib import Path
from typing import List, Dict, Optional

from assessment import AssessmentRecord


class TranscriptEntry:
    def __init__(self, timestamp: float, role: str, text: str):
        self.timestamp = timestamp
        self.role = role  # "user" or "assistant"
        self.text = text

    def to_dict(self) -> dict:
        return {
            "timestamp": self.timestamp,
            "datetime": datetime.fromtimestamp(self.timestamp).isoformat(),
            "role": self.role,
            "text": self.text,
        }


class SessionLogger:
    def __init__(self, session_id: str):
        self.session_id = session_id
        self.start_time = datetime.now()
        self.transcript_entries: List[TranscriptEntry] = []
        self.assessment_updates: List[Dict] = []
        self.markers: List[Dict] = []
        self.dispatches: List[Dict] = []

        self.current_assessment = AssessmentRecord.create_initial().to_dict()
        self.escalated_at: Optional[str] = None

    def log_user_transcript(self, text: str):
        """Log a user transcript entry."""
        self.transcript_entries.append(TranscriptEntry(time.time(), "user", text))
        print(f"[SessionLogger] User: {text[:50]}...")

    def log_assistant_transcript(self, text: str):
        """Log an assistant instruction."""
        self.transcript_entries.append(TranscriptEntry(time.time(), "assistant", text))
        print(f"[SessionLogger] Assistant: {text[:50]}...")

    def log_assessment(self, record: AssessmentRecord, source: str):
        """Log the assessment after an update from `source` (user, model, escalation)."""
        self.current_assessment = record.to_dict()
        self.assessment_updates.append({
            "timestamp": time.time(),
            "datetime": datetime.now().isoformat(),
            "source": source,
            "assessment": self.current_assessment,
        })

    def log_marker(self, marker: str):
        self.markers.append({
            "timestamp": time.time(),
            "datetime": datetime.now().isoformat(),
            "marker": marker,
        })

    def log_escalation(self, record: AssessmentRecord):
        self.escalated_at = datetime.now().isoformat()
        self.current_assessment = record.to_dict()
        print(f"[SessionLogger] Emergency escalation at {self.escalated_at}")

    def log_dispatch(self, kind: str, success: bool, sid: Optional[str], error: Optional[str]):
        """Log an emergency call or family alert outcome."""
        self.dispatches.append({
            "timestamp": time.time(),
            "datetime": datetime.now().isoformat(),
            "kind": kind,
            "success": success,
            "sid": sid,
            "error": error,
        })

    def save_session_log(self, output_dir: Optional[str] = None) -> str:
        """Save session log as JSON file."""
        if output_dir is None:
            output_dir = os.path.join(os.getcwd(), "session_logs")

        Path(output_dir).mkdir(parents=True, exist_ok=True)

        log_data = {
            "session_id": self.session_id,
            "start_time": self.start_time.isoformat(),
            "end_time": datetime.now().isoformat(),
            "duration_seconds": (datetime.now() - self.start_time).total_seconds(),
            "transcript_entries": [e.to_dict() for e in self.transcript_entries],
            "assessment_updates": self.assessment_updates,
            "markers": self.markers,
            "escalated_at": self.escalated_at,
            "dispatches": self.dispatches,
            "current_assessment": self.current_assessment,
        }

        filepath = os.path.join(output_dir, f"{self.session_id}_session_log.json")
        with open(filepath, "w") as f:
            json.dump(log_data, f, indent=2)

        print(f"[SessionLogger] Saved session log to {filepath}")
        return filepath

    def generate_ems_report(self, output_dir: Optional[str] = None) -> str:
        """Generate EMS-ready text report."""
        if output_dir is None:
            output_dir = os.path.join(os.getcwd(), "session_logs")

        Path(output_dir).mkdir(parents=True, exist_ok=True)

        a = self.current_assessment
        report_lines = [
            "=" * 50,
            "EMS READY REPORT - EMERGENCY AR SESSION",
            "=" * 50,
            "",
            "SESSION INFORMATION",
            "-" * 50,
            f"Session ID: {self.session_id}",
            f"Start Time: {self.start_time.strftime('%Y-%m-%d %H:%M:%S')}",
            f"End Time: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}",
            f"Duration: {(datetime.now() - self.start_time).total_seconds():.1f} seconds",
            "",
            "PATIENT ASSESSMENT",
            "-" * 50,
            f"Responsive: {a['responsive'].upper()}",
            f"Airway: {a['airway'].upper()}",
            f"Breathing: {a['breathing'].upper()}",
            f"Pulse: {a['pulse'].upper()}",
            f"Description: {a['patientDescription'] or 'n/a'}",
            f"Location: {a['location'] or 'n/a'}",
            "",
        ]

        if self.escalated_at:
            report_lines.extend([
                "EMERGENCY ESCALATION",
                "-" * 50,
                f"Triggered: {self.escalated_at}",
            ])
            for d in self.dispatches:
                status = f"OK ({d['sid']})" if d["success"] else f"FAILED ({d['error']})"
                report_lines.append(f"{d['kind']}: {status}")
            report_lines.append("")

        report_lines.extend([
            "CONVERSATION TRANSCRIPT",
            "-" * 50,
        ])
        for entry in self.transcript_entries:
            dt = datetime.fromtimestamp(entry.timestamp)
            report_lines.append(f"[{dt.strftime('%H:%M:%S')}] {entry.role.upper()}: {entry.text}")
            report_lines.append("")

        if self.markers:
            report_lines.extend([
                "MARKERS SHOWN",
                "-" * 50,
            ])
            for m in self.markers:
                dt = datetime.fromisoformat(m["datetime"])
                report_lines.append(f"[{dt.strftime('%H:%M:%S')}] {m['marker']}")

        report_lines.extend([
            "",
            "=" * 50,
            "END OF REPORT",
            "=" * 50,
        ])

        filepath = os.path.join(output_dir, f"{self.session_id}_EMS_Report.txt")
        with open(filepath, "w") as f:
            f.write("\n".join(report_lines))

        print(f"[SessionLogger] Generated EMS report: {filepath}")
        return filepath
