import json

from django.http import HttpRequest, JsonResponse

from voting.exceptions import VotingError


class RequestPayloadError(VotingError):
    code = "bad_request"
    default_message = "Request body is invalid."


def _normalize_str(value: object) -> str:
    if value is None:
        return ""
    return str(value).strip()


def parse_json_body(request: HttpRequest) -> dict[str, object]:
    if request.content_type and not request.content_type.startswith("application/json"):
        return {key: request.POST.get(key) for key in request.POST}

    raw = request.body.decode("utf-8") if request.body else "{}"
    try:
        data = json.loads(raw)
    except ValueError as exc:
        raise RequestPayloadError("Request body must be valid JSON.") from exc
    if not isinstance(data, dict):
        raise RequestPayloadError("Request body must be a JSON object.")
    return data


def required_int(data: dict[str, object], *keys: str) -> int:
    for key in keys:
        raw = _normalize_str(data.get(key))
        if raw:
            try:
                return int(raw)
            except ValueError as exc:
                raise RequestPayloadError(f"{key} must be an integer.") from exc
    raise RequestPayloadError(f"{keys[0]} is required.")


def client_ip(request: HttpRequest) -> str:
    return _normalize_str(request.META.get("REMOTE_ADDR"))


def client_user_agent(request: HttpRequest) -> str:
    return _normalize_str(request.META.get("HTTP_USER_AGENT"))[:512]


def voting_error_response(exc: VotingError) -> JsonResponse:
    return JsonResponse({"ok": False, "error": exc.message, "code": exc.code}, status=exc.http_status)
