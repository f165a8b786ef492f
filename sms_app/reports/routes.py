from datetime import date, datetime
from decimal import Decimal
from io import BytesIO

from flask import Blueprint, Response, current_app, request
from openpyxl import Workbook
from openpyxl.styles import Font

from .. import cache
from ..api_utils import api_error, api_success
from ..data_service import get_data_service
from ..decorators import permission_required
from .catalog import REPORTS
from .composer import ReportComposer, ReportState

reports_bp = Blueprint("reports", __name__)

XLSX_MIMETYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


def _report_cache_key(report_type):
    return f"report_{report_type}_{request.full_path}"


def _compose(report_type):
    """Run the report inline. Raises ValidationError for bad parameters."""
    composer = ReportComposer(get_data_service())
    params = {k: v for k, v in request.args.items() if v != ""}
    return composer.activate(report_type, **params)


def _failed(view):
    current_app.logger.warning("Report %s failed: %s", view.report_type, view.error)
    return api_error("data_fetch_failed", view.error or "Report failed", 502, details=view.as_dict())


@reports_bp.route("/reports/types", methods=["GET"])
@permission_required("view_reports")
def report_types():
    return api_success({"items": [r.as_dict() for r in REPORTS.values()]})


@reports_bp.route("/reports/<report_type>", methods=["GET"])
@permission_required("view_reports")
def report_view(report_type):
    key = _report_cache_key(report_type)
    cached = cache.get(key)
    if cached is not None:
        return api_success(cached, {"cached": True})

    view = _compose(report_type)
    if view.state != ReportState.READY:
        return _failed(view)
    body = view.as_dict()
    cache.set(key, body, timeout=current_app.config.get("REPORT_CACHE_TIMEOUT", 60))
    return api_success(body, {"cached": False})


def _flatten(value, prefix=""):
    """Nested dicts become dotted keys; lists are written as a count."""
    out = {}
    if isinstance(value, dict):
        for k, v in value.items():
            out.update(_flatten(v, f"{prefix}{k}."))
    elif isinstance(value, (list, tuple)):
        out[prefix[:-1]] = len(value)
    else:
        out[prefix[:-1]] = value
    return out


def _cell(value):
    if isinstance(value, datetime):
        # Excel cells carry no timezone
        return value.replace(tzinfo=None)
    if value is None or isinstance(value, (int, float, str, Decimal, date)):
        return value
    return str(value)


def build_workbook(view):
    wb = Workbook()
    ws = wb.active
    ws.title = "Summary"
    ws.append(["Report", view.as_dict()["title"]])
    for k, v in (view.params.as_dict() if view.params else {}).items():
        ws.append([k, _cell(v)])
    ws.append([])
    ws.append(["Metric", "Value"])
    ws.cell(row=ws.max_row, column=1).font = Font(bold=True)
    ws.cell(row=ws.max_row, column=2).font = Font(bold=True)
    for k, v in _flatten((view.data or {}).get("summary") or {}).items():
        ws.append([k, _cell(v)])

    rows = [_flatten(r) for r in (view.data or {}).get("rows") or []]
    header = []
    for r in rows:
        for k in r:
            if k not in header:
                header.append(k)
    rs = wb.create_sheet("Rows")
    rs.append(header)
    for c in rs[1]:
        c.font = Font(bold=True)
    for r in rows:
        rs.append([_cell(r.get(k)) for k in header])
    return wb


@reports_bp.route("/reports/<report_type>/export.xlsx", methods=["GET"])
@permission_required("view_reports")
def report_export(report_type):
    view = _compose(report_type)
    if view.state != ReportState.READY:
        return _failed(view)

    bio = BytesIO()
    build_workbook(view).save(bio)
    bio.seek(0)
    filename = f"{view.report_type}_{view.params.start.isoformat()}_{view.params.end.isoformat()}.xlsx"
    current_app.logger.info("Exported report %s for %s", view.report_type, request.full_path)
    return Response(bio.read(), mimetype=XLSX_MIMETYPE, headers={
        "Content-Disposition": f"attachment; filename={filename}"
    })
