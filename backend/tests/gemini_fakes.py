"""Stand-ins for httpx responses from the Gemini API."""


class DummyGeminiResponse:
    def __init__(self, *, ok: bool = True, status_code: int = 200, text: str = "", data=None, content: bytes = b"", headers=None):
        self.is_success = ok
        self.status_code = status_code
        self.text = text
        self.content = content
        self.headers = headers or {}
        self._data = data

    def json(self):
        if self._data is None:
            raise ValueError("No JSON body")
        return self._data


def image_response(data: str = "AAAA", mime_type: str = "image/png"):
    return DummyGeminiResponse(
        data={"candidates": [{"content": {"parts": [{"inline_data": {"data": data, "mime_type": mime_type}}]}}]}
    )


def text_response(text: str):
    return DummyGeminiResponse(data={"candidates": [{"content": {"parts": [{"text": text}]}}]})


def error_response(status_code: int, message: str, reason: str = ""):
    error = {"code": status_code, "message": message, "status": "ERROR"}
    if reason:
        error["details"] = [{"@type": "type.googleapis.com/google.rpc.ErrorInfo", "reason": reason}]
    return DummyGeminiResponse(ok=False, status_code=status_code, text=message, data={"error": error})
