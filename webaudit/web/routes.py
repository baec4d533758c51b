## routes.py
from __future__ import annotations

from flask import Blueprint, current_app, jsonify, request

from webaudit.domain.models import AnalysisResult


def _field(payload: dict, name: str) -> str:
    value = payload.get(name)
    return value.strip() if isinstance(value, str) else ""


def create_blueprint(orchestrator) -> Blueprint:
    bp = Blueprint("web", __name__)

    @bp.get("/health")
    def health():
        return jsonify({"status": "ok"})

    @bp.post("/analyze")
    def analyze():
        payload = request.get_json(silent=True)
        if not isinstance(payload, dict):
            # Plain form posts are accepted as well.
            payload = request.form.to_dict() if request.form else {}

        url_raw = _field(payload, "url")
        business_name = _field(payload, "business_name") or None
        if not url_raw:
            return jsonify({"success": False, "error": "URL is required."}), 400

        try:
            result: AnalysisResult = orchestrator.run(url_raw, business_name=business_name)
        except ValueError as e:
            return jsonify({"success": False, "error": str(e)}), 400

        code = 200 if result.success else 500
        if result.success:
            current_app.logger.info(
                "Analysis %s url=%s overall=%s",
                result.bundle.id, result.bundle.url, result.bundle.composite_score,
            )
        else:
            current_app.logger.error("Analysis failed url=%s: %s", url_raw, result.error)

        return jsonify(result.to_dict()), code

    return bp
