"""Firestore REST API 원장 저장소

requests로 Firestore REST API(v1)를 호출합니다.
- 배치 쓰기: documents:commit (currentDocument 전제 조건 + REQUEST_TIME 서버 시각)
- 열린 구간 조회: :runQuery (segment_type == X, end_time IS NULL, start_time 내림차순, 1건)
- 단건 조회: GET 문서

commit은 Firestore에서 원자적으로 처리되므로 두 건짜리 전환도 전부 반영되거나 전부 거부됩니다.
"""

import asyncio
from typing import Any, Dict, List, Optional
from urllib.parse import quote

import requests

from core.ledger_store import LedgerStore, LedgerWrite, CREATED_AT, LAST_UPDATED_AT
from utils.exceptions import ConfigurationError, LedgerError, LedgerTimeoutError

FIRESTORE_BASE_URL = "https://firestore.googleapis.com/v1"
TIMELINES_COLLECTION = "serial_timelines"
SEGMENTS_COLLECTION = "segments"


def encode_value(value: Any) -> Dict[str, Any]:
    """파이썬 값을 Firestore 타입 값으로 변환합니다."""
    if value is None:
        return {'nullValue': None}
    if isinstance(value, bool):
        return {'booleanValue': value}
    if isinstance(value, int):
        return {'integerValue': str(value)}
    if isinstance(value, float):
        return {'doubleValue': value}
    if isinstance(value, dict):
        return {'mapValue': {'fields': encode_fields(value)}}
    if isinstance(value, (list, tuple)):
        return {'arrayValue': {'values': [encode_value(v) for v in value]}}
    return {'stringValue': str(value)}


def decode_value(value: Dict[str, Any]) -> Any:
    """Firestore 타입 값을 파이썬 값으로 변환합니다."""
    if 'nullValue' in value:
        return None
    if 'booleanValue' in value:
        return bool(value['booleanValue'])
    if 'integerValue' in value:
        return int(value['integerValue'])
    if 'doubleValue' in value:
        return float(value['doubleValue'])
    if 'stringValue' in value:
        return value['stringValue']
    if 'timestampValue' in value:
        return value['timestampValue']
    if 'mapValue' in value:
        return decode_fields(value['mapValue'].get('fields', {}))
    if 'arrayValue' in value:
        return [decode_value(v) for v in value['arrayValue'].get('values', [])]
    return None


def encode_fields(data: Dict[str, Any]) -> Dict[str, Dict[str, Any]]:
    return {key: encode_value(value) for key, value in data.items()}


def decode_fields(fields: Dict[str, Dict[str, Any]]) -> Dict[str, Any]:
    return {key: decode_value(value) for key, value in fields.items()}


class FirestoreLedgerStore(LedgerStore):
    """Firestore에 구간 원장을 기록하는 저장소"""

    def __init__(self, project_id: str, api_key: str = "", database: str = "(default)",
                 timeout: float = 12, session: Optional[requests.Session] = None):
        if not project_id:
            raise ConfigurationError("Firestore project_id가 설정되지 않았습니다 (ledger.project_id).")
        self.project_id = project_id
        self.api_key = api_key
        self.database = database or "(default)"
        self.timeout = timeout
        self.session = session or requests.Session()

    @property
    def database_path(self) -> str:
        return f"projects/{self.project_id}/databases/{self.database}"

    @property
    def documents_path(self) -> str:
        return f"{self.database_path}/documents"

    def header_name(self, serial: str) -> str:
        return f"{self.documents_path}/{TIMELINES_COLLECTION}/{serial}"

    def segment_name(self, serial: str, segment_id: str) -> str:
        return f"{self.header_name(serial)}/{SEGMENTS_COLLECTION}/{segment_id}"

    def _url(self, *parts: str) -> str:
        return "/".join([FIRESTORE_BASE_URL, self.documents_path] + [quote(p, safe='') for p in parts])

    # ------------------------------------------------------------------
    # HTTP
    # ------------------------------------------------------------------

    def _request(self, method: str, url: str, body: Optional[Dict[str, Any]] = None,
                 allow_not_found: bool = False) -> Any:
        params = {'key': self.api_key} if self.api_key else None
        try:
            response = self.session.request(method, url, params=params, json=body, timeout=self.timeout)
        except requests.exceptions.Timeout as e:
            raise LedgerTimeoutError(f"원장 응답 시간 초과: {e}") from e
        except requests.exceptions.RequestException as e:
            raise LedgerError(f"원장 통신 오류: {e}") from e

        if allow_not_found and response.status_code == 404:
            return None
        if not response.ok:
            raise LedgerError(self._error_message(response))
        return response.json() if response.content else {}

    @staticmethod
    def _error_message(response: requests.Response) -> str:
        try:
            message = response.json().get('error', {}).get('message') or response.text
        except (ValueError, AttributeError):
            message = response.text
        return f"원장 오류 ({response.status_code}): {message}"

    async def _call(self, method: str, url: str, body: Optional[Dict[str, Any]] = None,
                    allow_not_found: bool = False) -> Any:
        return await asyncio.to_thread(self._request, method, url, body, allow_not_found)

    # ------------------------------------------------------------------
    # LedgerStore
    # ------------------------------------------------------------------

    async def get_segment(self, serial, segment_id):
        url = self._url(TIMELINES_COLLECTION, serial, SEGMENTS_COLLECTION, segment_id)
        document = await self._call('GET', url, allow_not_found=True)
        if document is None:
            return None
        return decode_fields(document.get('fields', {}))

    async def find_latest_open(self, serial, segment_type):
        url = self._url(TIMELINES_COLLECTION, serial) + ":runQuery"
        query = {
            'structuredQuery': {
                'from': [{'collectionId': SEGMENTS_COLLECTION}],
                'where': {
                    'compositeFilter': {
                        'op': 'AND',
                        'filters': [
                            {'fieldFilter': {'field': {'fieldPath': 'segment_type'}, 'op': 'EQUAL',
                                             'value': encode_value(segment_type)}},
                            {'unaryFilter': {'field': {'fieldPath': 'end_time'}, 'op': 'IS_NULL'}},
                        ],
                    }
                },
                'orderBy': [{'field': {'fieldPath': 'start_time'}, 'direction': 'DESCENDING'}],
                'limit': 1,
            }
        }
        results = await self._call('POST', url, query)
        for item in results or []:
            document = item.get('document')
            if document:
                segment_id = document['name'].rsplit('/', 1)[-1]
                return segment_id, decode_fields(document.get('fields', {}))
        return None

    def _encode_write(self, write: LedgerWrite) -> Dict[str, Any]:
        encoded = {
            'update': {
                'name': self.segment_name(write.serial, write.segment_id),
                'fields': encode_fields(write.fields),
            },
            'currentDocument': {'exists': not write.create},
        }
        transforms = [LAST_UPDATED_AT]
        if write.create:
            transforms.insert(0, CREATED_AT)
        else:
            encoded['updateMask'] = {'fieldPaths': sorted(write.fields)}
        encoded['updateTransforms'] = [
            {'fieldPath': path, 'setToServerValue': 'REQUEST_TIME'} for path in transforms
        ]
        return encoded

    async def commit(self, writes: List[LedgerWrite]):
        url = f"{FIRESTORE_BASE_URL}/{self.documents_path}:commit"
        await self._call('POST', url, {'writes': [self._encode_write(w) for w in writes]})

    async def merge_header(self, serial, fields):
        url = f"{FIRESTORE_BASE_URL}/{self.documents_path}:commit"
        write = {
            'update': {'name': self.header_name(serial), 'fields': encode_fields(fields)},
            'updateMask': {'fieldPaths': sorted(fields)},
            'updateTransforms': [{'fieldPath': LAST_UPDATED_AT, 'setToServerValue': 'REQUEST_TIME'}],
        }
        await self._call('POST', url, {'writes': [write]})
