"""Dashboard summary downloads (CSV and JSON)."""
import csv
import io
import json

from fastapi.encoders import jsonable_encoder

from config import config
from core.exceptions import ValidationError
from schemas.analytics_schema import DashboardSummary

EXPORT_FORMATS = {
    "csv": "text/csv",
    "json": "application/json",
}
TOP_DOMAINS_EXPORT_LIMIT = 20


def validate_format(fmt: str) -> str:
    value = (fmt or "").strip().lower()
    if value not in EXPORT_FORMATS:
        raise ValidationError(f"Unsupported export format '{fmt}', expected one of: {', '.join(EXPORT_FORMATS)}")
    return value


def export_filename(days: int, fmt: str) -> str:
    return f"analytics-{days}days.{fmt}"


def _percentage(count: int, total: int) -> str:
    if total <= 0:
        return "0%"
    return f"{count / total * 100:.1f}%"


def render_csv(summary: DashboardSummary) -> str:
    buf = io.StringIO()
    writer = csv.writer(buf, lineterminator="\n")

    writer.writerow(["Date", "Total Analyses", "Unique Users", "Avg Response Time", "Success Rate"])
    for day in summary.daily_stats:
        writer.writerow([day.date, day.total_analyses, day.unique_users, day.avg_response_time, day.success_rate])

    writer.writerow([])
    writer.writerow(["Tool Usage Summary"])
    writer.writerow(["Tool", "Usage Count", "Percentage"])
    total_usage = sum(summary.tool_stats.values())
    for tool, count in summary.tool_stats.items():
        writer.writerow([config.get_tool_display_name(tool), count, _percentage(count, total_usage)])

    writer.writerow([])
    writer.writerow(["Top Domains"])
    writer.writerow(["Domain", "Total Analyses", "Tools Used"])
    for domain in summary.top_domains[:TOP_DOMAINS_EXPORT_LIMIT]:
        writer.writerow([domain.domain, domain.total_analyses, len(domain.tools_used or [])])

    return buf.getvalue()


def render_json(summary: DashboardSummary) -> str:
    return json.dumps(jsonable_encoder(summary), indent=2)


def render(summary: DashboardSummary, fmt: str) -> tuple[str, str]:
    """Return ``(body, media_type)`` for the requested format."""
    fmt = validate_format(fmt)
    body = render_csv(summary) if fmt == "csv" else render_json(summary)
    return body, EXPORT_FORMATS[fmt]
