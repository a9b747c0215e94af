from typing import List

import httpx


class ExamApiError(Exception):
    """The server answered with a non-success status."""

    def __init__(self, status_code: int, detail: str):
        self.status_code = status_code
        self.detail = detail
        super().__init__(f"{status_code}: {detail}")


class ExamApiClient:
    """Student-side HTTP client.

    Transport failures (offline, DNS, timeouts) propagate as httpx.TransportError
    so callers can hold and retry; HTTP rejections raise ExamApiError.
    """

    def __init__(self, base_url: str, access_token: str, timeout: float = 10.0, transport=None):
        self._client = httpx.AsyncClient(
            base_url=base_url,
            headers={"Authorization": f"Bearer {access_token}"},
            timeout=timeout,
            transport=transport,
        )

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        await self.aclose()

    async def aclose(self):
        await self._client.aclose()

    async def _request(self, method: str, url: str, **kwargs) -> dict:
        resp = await self._client.request(method, url, **kwargs)
        if resp.is_success:
            return resp.json()
        try:
            detail = resp.json().get("detail", resp.text)
        except ValueError:
            detail = resp.text
        raise ExamApiError(resp.status_code, detail)

    async def download(self, session_id: int) -> dict:
        return await self._request("GET", f"/exam/{session_id}/download")

    async def start(self, session_id: int, session_token: str) -> dict:
        return await self._request("POST", f"/exam/{session_id}/start", json={"sessionToken": session_token})

    async def submit(self, session_id: int, session_token: str, answers: List[dict], auto_submitted: bool) -> dict:
        return await self._request(
            "POST",
            f"/exam/{session_id}/submit",
            json={"sessionToken": session_token, "answers": answers, "autoSubmitted": auto_submitted},
        )

    async def result(self, session_id: int) -> dict:
        return await self._request("GET", f"/exam/{session_id}/result")

    async def assigned(self) -> list:
        return await self._request("GET", "/exam/assigned")
