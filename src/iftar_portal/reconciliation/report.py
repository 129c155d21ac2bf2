"""Report generation for pending-payment sweeps."""

import json
import csv
import io
from datetime import datetime

from .models import SweepReport, ReconciliationStatus


class ReportGenerator:
    """Generator for sweep reports in various formats."""

    def __init__(self, report: SweepReport):
        """Initialize the report generator.

        Args:
            report: The sweep report to generate output from.
        """
        self.report = report

    def to_json(self, include_details: bool = True, indent: int = 2) -> str:
        """Generate JSON representation of the report.

        Args:
            include_details: If True, include every examined payment.
            indent: JSON indentation level.

        Returns:
            JSON string representation of the report.
        """
        if include_details:
            data = self.report.to_full_dict()
        else:
            data = self.report.to_summary_dict()

        def json_serializer(obj):
            if isinstance(obj, datetime):
                return obj.isoformat()
            if isinstance(obj, ReconciliationStatus):
                return obj.value
            raise TypeError(f"Object of type {type(obj)} is not JSON serializable")

        return json.dumps(data, indent=indent, default=json_serializer)

    def to_csv(self) -> str:
        """Generate CSV with one row per examined payment."""
        output = io.StringIO()
        writer = csv.writer(output)
        writer.writerow([
            "payment_id", "transaction_id", "previous_status",
            "gateway_status", "new_status", "error",
        ])
        for item in self.report.items:
            writer.writerow([
                item.payment_id,
                item.transaction_id,
                item.previous_status,
                item.gateway_status or "",
                item.new_status or "",
                item.error or "",
            ])
        return output.getvalue()

    def to_summary_text(self) -> str:
        """Generate a human-readable text summary of the report.

        Returns:
            Formatted text summary of the sweep.
        """
        summary = self.report.to_summary_dict()
        stats = summary["statistics"]

        lines = [
            "=" * 60,
            "PENDING PAYMENT SWEEP SUMMARY",
            "=" * 60,
            f"Report ID: {summary['id']}",
            f"Status: {summary['status']}",
            f"Provider: {summary['provider']}",
            f"Older Than: {summary['older_than_minutes']} min",
            "",
            "Statistics:",
            f"  Checked: {stats['total_checked']}",
            f"  Updated: {stats['total_updated']}",
            f"  Still Pending: {stats['total_still_pending']}",
            f"  Errors: {stats['total_errors']}",
            "",
            f"Created At: {summary['created_at']}",
            f"Completed At: {summary['completed_at'] or 'N/A'}",
        ]

        if summary.get("error_message"):
            lines.extend([
                "",
                "Error:",
                f"  {summary['error_message']}",
            ])

        failed_items = [item for item in self.report.items if item.error]
        if failed_items:
            lines.extend(["", "Gateway Errors:"])
            for item in failed_items:
                lines.append(f"  {item.transaction_id}: {item.error}")

        lines.append("=" * 60)

        return "\n".join(lines)
