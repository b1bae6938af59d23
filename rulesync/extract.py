"""
Google Sheets Document Download

Turns a spreadsheet share link into workbook bytes.
Tries an authenticated CSV export first (service-account bearer token) and
falls back to the public XLSX export when anything in that path fails.
"""

import io
import logging
import re
import threading
import time
from typing import Any, Dict, List, Optional

import gspread
import pandas as pd
import requests
from google.auth.exceptions import GoogleAuthError
from google.auth.transport.requests import Request
from google.oauth2.service_account import Credentials

from rulesync.errors import (
    AuthenticationFailure,
    DownloadTimeout,
    InvalidUrlFormat,
    NetworkFailure,
)

logger = logging.getLogger(__name__)

# XLSX files are zip archives.
XLSX_MAGIC = b"PK"


def csv_to_xlsx(csv_bytes: bytes) -> bytes:
    """
    Convert a CSV export into single-sheet XLSX bytes.

    Every cell is kept as text so codes such as "00123" survive the round trip.
    """
    frame = pd.read_csv(
        io.BytesIO(csv_bytes),
        dtype=str,
        header=None,
        keep_default_na=False,
        skip_blank_lines=False,
        encoding="utf-8",
    )
    buffer = io.BytesIO()
    frame.to_excel(buffer, index=False, header=False, sheet_name="Sheet1", engine="openpyxl")
    return buffer.getvalue()


class SheetFetcher:
    """
    Downloads spreadsheet documents from Google.

    Supports service account authentication with an unauthenticated fallback.
    """

    SCOPES = [
        "https://www.googleapis.com/auth/spreadsheets.readonly",
        "https://www.googleapis.com/auth/drive.readonly",
    ]

    EXPORT_URL_TEMPLATE = "https://docs.google.com/spreadsheets/d/{sheet_id}/export?format={export_format}"
    SHEET_ID_PATTERN = re.compile(r"/spreadsheets/d/([a-zA-Z0-9-_]+)")
    CHUNK_SIZE = 8 * 1024

    def __init__(
        self,
        credentials_path: Optional[str],
        timeout: float = 30,
        session: Optional[requests.Session] = None,
    ):
        """
        Initialize the fetcher.

        Args:
            credentials_path: Path to service account JSON file (may be missing,
                in which case only the public export path can succeed)
            timeout: Hard wall-clock limit in seconds for one download
            session: Optional requests session (shared across tables)
        """
        self.credentials_path = credentials_path
        self.timeout = timeout
        self._owns_session = session is None
        self.session = session or requests.Session()
        self._credentials: Optional[Credentials] = None

    def close(self) -> None:
        """Release the HTTP session if this fetcher created it."""
        if self._owns_session:
            self.session.close()
            logger.debug("HTTP session closed")

    # ------------------------------------------------------------------
    # URL handling
    # ------------------------------------------------------------------

    def extract_sheet_id(self, url: str) -> str:
        """
        Extract the spreadsheet id from a share link.

        Raises:
            InvalidUrlFormat: If the URL has no /spreadsheets/d/<id> segment
        """
        match = self.SHEET_ID_PATTERN.search(url or "")
        if not match:
            raise InvalidUrlFormat("Invalid Google Sheets URL format", {"url": url})
        return match.group(1)

    def convert_to_export_url(self, url: str, export_format: str = "xlsx") -> str:
        """
        Convert a Google Sheets share link to an export link.

        Args:
            url: Google Sheets sharing URL
            export_format: "xlsx" or "csv"

        Returns:
            Export URL for the same document

        Example:
            fetcher.convert_to_export_url("https://docs.google.com/spreadsheets/d/abc/edit")
            # -> "https://docs.google.com/spreadsheets/d/abc/export?format=xlsx"
        """
        sheet_id = self.extract_sheet_id(url)
        export_url = self.EXPORT_URL_TEMPLATE.format(sheet_id=sheet_id, export_format=export_format)
        logger.debug(f"Converted {url} to export URL {export_url}")
        return export_url

    # ------------------------------------------------------------------
    # Authentication
    # ------------------------------------------------------------------

    def _get_credentials(self) -> Credentials:
        """
        Load service account credentials once per fetcher.

        Raises:
            AuthenticationFailure: If the credentials file is missing or invalid
        """
        if self._credentials is not None:
            return self._credentials

        if not self.credentials_path:
            raise AuthenticationFailure("No service account credentials configured")

        try:
            self._credentials = Credentials.from_service_account_file(
                self.credentials_path, scopes=self.SCOPES
            )
        except FileNotFoundError as e:
            raise AuthenticationFailure(
                f"Credentials file not found: {self.credentials_path}",
                {"credentials_path": self.credentials_path},
            ) from e
        except (ValueError, KeyError) as e:
            raise AuthenticationFailure(f"Invalid service account file: {e}") from e

        return self._credentials

    def get_access_token(self) -> str:
        """
        Exchange a signed service-account assertion for a bearer token.

        Raises:
            AuthenticationFailure: If the token exchange fails
        """
        credentials = self._get_credentials()
        try:
            credentials.refresh(Request())
        except GoogleAuthError as e:
            raise AuthenticationFailure(f"Token exchange failed: {e}") from e

        if not credentials.token:
            raise AuthenticationFailure("Token exchange returned no access token")

        logger.debug("Obtained short-lived access token for service account")
        return credentials.token

    def _gspread_client(self) -> gspread.Client:
        return gspread.authorize(self._get_credentials())

    # ------------------------------------------------------------------
    # Download
    # ------------------------------------------------------------------

    def _get(self, url: str, headers: Optional[Dict[str, str]] = None) -> bytes:
        """
        Fetch a URL, following redirects, within the wall-clock timeout.

        The transfer runs on a daemon worker thread so a server that keeps
        trickling bytes cannot hold the caller past the deadline.

        Raises:
            DownloadTimeout: If the limit is exceeded
            NetworkFailure: On transport errors or non-200 responses
        """
        outcome: Dict[str, Any] = {}

        def worker() -> None:
            try:
                outcome["data"] = self._transfer(url, headers, outcome)
            except Exception as e:
                outcome["error"] = e

        thread = threading.Thread(target=worker, name="sheet-download", daemon=True)
        thread.start()
        thread.join(self.timeout)

        if thread.is_alive():
            response = outcome.get("response")
            if response is not None:
                response.close()
            raise DownloadTimeout(f"Download timeout after {self.timeout} seconds", {"url": url})

        if "error" in outcome:
            raise outcome["error"]
        return outcome["data"]

    def _transfer(self, url: str, headers: Optional[Dict[str, str]], outcome: Dict[str, Any]) -> bytes:
        deadline = time.monotonic() + self.timeout
        response = None
        try:
            response = self.session.get(
                url,
                headers=headers,
                timeout=self.timeout,
                allow_redirects=True,
                stream=True,
            )
            outcome["response"] = response
            if response.status_code != 200:
                raise NetworkFailure(
                    f"Failed to download: {response.status_code} {response.reason}",
                    {"url": url, "status_code": response.status_code},
                )

            chunks: List[bytes] = []
            for chunk in response.iter_content(chunk_size=self.CHUNK_SIZE):
                if time.monotonic() > deadline:
                    raise DownloadTimeout(
                        f"Download timeout after {self.timeout} seconds", {"url": url}
                    )
                if chunk:
                    chunks.append(chunk)
            return b"".join(chunks)

        except requests.exceptions.Timeout as e:
            raise DownloadTimeout(f"Download timeout after {self.timeout} seconds", {"url": url}) from e
        except requests.exceptions.RequestException as e:
            raise NetworkFailure(f"Request error during download: {e}", {"url": url}) from e
        finally:
            if response is not None:
                response.close()

    def download_authenticated(self, url: str) -> bytes:
        """Download the CSV export with a bearer token and convert it to XLSX."""
        token = self.get_access_token()
        csv_url = self.convert_to_export_url(url, export_format="csv")
        csv_bytes = self._get(csv_url, headers={"Authorization": f"Bearer {token}"})
        logger.debug(f"Authenticated CSV export downloaded ({len(csv_bytes)} bytes)")
        return csv_to_xlsx(csv_bytes)

    def download_public(self, url: str) -> bytes:
        """Download the XLSX export without credentials."""
        export_url = self.convert_to_export_url(url, export_format="xlsx")
        data = self._get(export_url)
        if not data.startswith(XLSX_MAGIC):
            raise NetworkFailure(
                "Export did not return a workbook (document may not be shared publicly)",
                {"url": export_url, "size": len(data)},
            )
        return data

    def download(self, url: str) -> bytes:
        """
        Download a spreadsheet as XLSX bytes.

        The authenticated path runs first; any failure there is logged as a
        warning and the public export is tried instead.

        Args:
            url: Google Sheets sharing URL

        Returns:
            XLSX workbook bytes

        Raises:
            InvalidUrlFormat: If the URL cannot be converted
            DownloadTimeout: If the fallback download times out
            NetworkFailure: If the fallback download fails
        """
        # Fail fast on malformed URLs; neither path could succeed.
        self.extract_sheet_id(url)

        logger.info(f"Downloading spreadsheet: {url}")
        try:
            data = self.download_authenticated(url)
            logger.info(f"Authenticated download completed ({len(data)} bytes)")
            return data
        except Exception as e:
            logger.warning(
                f"Authenticated download failed ({type(e).__name__}: {e}); "
                f"falling back to public export"
            )

        data = self.download_public(url)
        logger.info(f"Public export download completed ({len(data)} bytes)")
        return data

    # ------------------------------------------------------------------
    # Access checks
    # ------------------------------------------------------------------

    def validate_access(self, url: str) -> bool:
        """
        Check whether a spreadsheet can be reached. Never raises.

        Args:
            url: Google Sheets sharing URL

        Returns:
            True if either the API or the public export answers
        """
        try:
            sheet_id = self.extract_sheet_id(url)
        except InvalidUrlFormat:
            logger.error(f"Sheet validation failed, invalid URL: {url}")
            return False

        try:
            spreadsheet = self._gspread_client().open_by_key(sheet_id)
            logger.debug(f"Sheet validation passed via API: {spreadsheet.title}")
            return True
        except Exception as e:
            logger.debug(f"API access check failed for {sheet_id}: {e}")

        response = None
        try:
            export_url = self.EXPORT_URL_TEMPLATE.format(sheet_id=sheet_id, export_format="xlsx")
            response = self.session.get(
                export_url, timeout=min(self.timeout, 10), allow_redirects=True, stream=True
            )
            accessible = response.status_code == 200
            logger.debug(f"Export access check for {sheet_id}: status={response.status_code}")
            return accessible
        except Exception as e:
            logger.error(f"Sheet validation failed for {url}: {e}")
            return False
        finally:
            if response is not None:
                try:
                    response.close()
                except Exception:
                    logger.debug("Ignoring error while closing access-check response")

    def get_sheet_info(self, url: str) -> Dict[str, Any]:
        """
        Get basic information about a spreadsheet.

        Returns:
            Dictionary with title and sheet_count

        Raises:
            InvalidUrlFormat, AuthenticationFailure, gspread exceptions
        """
        sheet_id = self.extract_sheet_id(url)
        spreadsheet = self._gspread_client().open_by_key(sheet_id)
        info = {
            "title": spreadsheet.title or "Unknown Sheet",
            "sheet_count": len(spreadsheet.worksheets()),
        }
        logger.debug(f"Sheet information for {sheet_id}: {info}")
        return info
