"""데이터 모델 정의 모듈"""

from dataclasses import dataclass, field
from typing import List, Dict, Optional, Any
import datetime
import random
import string
import threading

SOURCE_HARDWARE = "hardware"
SOURCE_MANUAL = "manual"

TARGET_PRISMA = "prisma"
TARGET_TRAIN = "train"
TARGET_TYPES = (TARGET_PRISMA, TARGET_TRAIN)

KIND_BUFFER = "buffer"
KIND_FOLDER = "folder"
KIND_TRAIN = "train"
KIND_WAGON = "wagon"

BUFFER_SOURCE_KEY = "buffer"

_ID_ALPHABET = string.digits + string.ascii_lowercase
_id_lock = threading.Lock()
_issued: Dict[str, Any] = {'millis': None, 'suffixes': set()}


def now_iso() -> str:
    return datetime.datetime.now(datetime.timezone.utc).isoformat()


def generate_id(moment: Optional[datetime.datetime] = None) -> str:
    """타임스탬프(ms)와 4자리 무작위 접미사로 ID를 만듭니다.

    같은 밀리초 안에서는 접미사가 겹치지 않도록 다시 뽑습니다.
    """
    moment = moment or datetime.datetime.now(datetime.timezone.utc)
    millis = int(moment.timestamp() * 1000)
    with _id_lock:
        if _issued['millis'] != millis:
            _issued['millis'] = millis
            _issued['suffixes'] = set()
        while True:
            suffix = ''.join(random.choice(_ID_ALPHABET) for _ in range(4))
            if suffix not in _issued['suffixes']:
                _issued['suffixes'].add(suffix)
                return f"{millis}_{suffix}"


def build_friendly_name(moment: datetime.datetime) -> str:
    return f"scan_{moment.day:02d}_{moment.hour:02d}"


@dataclass(frozen=True)
class ScanItem:
    """디코딩된 스캔 한 건. 생성 후 변경되지 않습니다."""
    id: str
    code: str
    timestamp: str
    friendly_name: str
    label_type: Optional[str] = None
    source: str = SOURCE_HARDWARE
    raw_intent: Optional[Dict[str, Any]] = field(default=None, compare=False, repr=False)

    @classmethod
    def capture(cls, code: str, label_type: Optional[str] = None, source: str = SOURCE_HARDWARE,
                raw_intent: Optional[Dict[str, Any]] = None,
                moment: Optional[datetime.datetime] = None) -> "ScanItem":
        """현재 시각 기준으로 새 스캔 항목을 생성합니다."""
        moment = moment or datetime.datetime.now().astimezone()
        return cls(
            id=generate_id(moment),
            code=code,
            timestamp=moment.astimezone(datetime.timezone.utc).isoformat(),
            friendly_name=build_friendly_name(moment),
            label_type=label_type,
            source=source,
            raw_intent=raw_intent,
        )

    def to_payload(self) -> Dict[str, Any]:
        """업로드 요청 본문에 들어가는 형태로 변환합니다."""
        payload = {
            'id': self.id,
            'code': self.code,
            'friendlyName': self.friendly_name,
            'timestamp': self.timestamp,
            'source': self.source,
        }
        if self.label_type is not None:
            payload['labelType'] = self.label_type
        return payload

    def to_dict(self) -> Dict[str, Any]:
        # raw_intent는 메모리에만 유지
        return self.to_payload()

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ScanItem":
        return cls(
            id=data['id'],
            code=data.get('code', ''),
            timestamp=data.get('timestamp', ''),
            friendly_name=data.get('friendlyName', ''),
            label_type=data.get('labelType'),
            source=data.get('source', SOURCE_HARDWARE),
        )


@dataclass
class Wagon:
    """train 폴더 안의 하위 그룹(왜건)입니다."""
    id: str
    name: str
    scans: List[ScanItem] = field(default_factory=list)
    created_at: str = field(default_factory=now_iso)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'name': self.name,
            'createdAt': self.created_at,
            'scans': [scan.to_dict() for scan in self.scans],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Wagon":
        return cls(
            id=data['id'],
            name=data.get('name', ''),
            scans=[ScanItem.from_dict(s) for s in data.get('scans', [])],
            created_at=data.get('createdAt') or now_iso(),
        )


@dataclass
class Folder:
    """이름이 있는 스캔 묶음. target이 train이면 스캔은 왜건에만 들어갑니다."""
    id: str
    name: str
    target: str = TARGET_PRISMA
    scans: List[ScanItem] = field(default_factory=list)
    wagons: List[Wagon] = field(default_factory=list)
    created_at: str = field(default_factory=now_iso)

    @property
    def is_train(self) -> bool:
        return self.target == TARGET_TRAIN

    @property
    def scan_count(self) -> int:
        if self.is_train:
            return sum(len(wagon.scans) for wagon in self.wagons)
        return len(self.scans)

    def find_wagon(self, wagon_id: str) -> Optional[Wagon]:
        return next((wagon for wagon in self.wagons if wagon.id == wagon_id), None)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'name': self.name,
            'target': self.target,
            'createdAt': self.created_at,
            'scans': [scan.to_dict() for scan in self.scans],
            'wagons': [wagon.to_dict() for wagon in self.wagons],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Folder":
        return cls(
            id=data['id'],
            name=data.get('name', ''),
            target=data.get('target', TARGET_PRISMA),
            scans=[ScanItem.from_dict(s) for s in data.get('scans', [])],
            wagons=[Wagon.from_dict(w) for w in data.get('wagons', [])],
            created_at=data.get('createdAt') or now_iso(),
        )


@dataclass
class ScanGroup:
    """업로드 원본 안의 연속된 스캔 묶음. 왜건에서 왔으면 wagon_name이 붙습니다."""
    scans: List[ScanItem]
    wagon_name: Optional[str] = None


@dataclass
class SendSource:
    """업로드 대상으로 선택된 원본(버퍼, 폴더, 왜건, train 전체)입니다."""
    key: str
    kind: str
    label: str
    groups: List[ScanGroup] = field(default_factory=list)
    folder_name: Optional[str] = None

    @property
    def scans(self) -> List[ScanItem]:
        return [scan for group in self.groups for scan in group.scans]

    @property
    def count(self) -> int:
        return sum(len(group.scans) for group in self.groups)


@dataclass
class SendMetadata:
    """전송 시점의 메타데이터. 세션 생성 시 한 번만 스냅샷됩니다."""
    device_id: str
    app_name: str
    comment: Optional[str] = None
    target_type: Optional[str] = None
    target_name: Optional[str] = None


@dataclass
class UploadChunk:
    """업로드 단위. scans에는 전송 형태(dict)의 스냅샷이 들어갑니다."""
    scans: List[Dict[str, Any]]
    sent: bool = False
    created_at: str = field(default_factory=now_iso)
    wagon_name: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data = {'scans': self.scans, 'sent': self.sent, 'createdAt': self.created_at}
        if self.wagon_name is not None:
            data['wagonName'] = self.wagon_name
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "UploadChunk":
        return cls(
            scans=list(data.get('scans', [])),
            sent=bool(data.get('sent', False)),
            created_at=data.get('createdAt') or now_iso(),
            wagon_name=data.get('wagonName'),
        )


@dataclass
class UploadSession:
    """원본 하나에 대한 진행 중(또는 재개 가능한) 업로드 상태입니다."""
    source_key: str
    device: Dict[str, str]
    total: int
    chunk_size: int
    chunks: List[UploadChunk] = field(default_factory=list)
    comment: Optional[str] = None
    target_type: Optional[str] = None
    target_name: Optional[str] = None
    created_at: str = field(default_factory=now_iso)

    @property
    def is_complete(self) -> bool:
        return all(chunk.sent for chunk in self.chunks)

    @property
    def sent_count(self) -> int:
        return sum(1 for chunk in self.chunks if chunk.sent)

    @property
    def scan_count(self) -> int:
        return sum(len(chunk.scans) for chunk in self.chunks)

    def build_payload(self, chunk: UploadChunk) -> Dict[str, Any]:
        """청크 하나를 서버 전송 본문으로 만듭니다. 값이 없는 선택 필드는 생략합니다."""
        payload: Dict[str, Any] = {'device': dict(self.device)}
        if self.comment:
            payload['comment'] = self.comment
        if self.target_name and self.target_type in TARGET_TYPES:
            payload[self.target_type] = self.target_name
        if chunk.wagon_name:
            payload['wagon'] = chunk.wagon_name
        payload['total'] = self.total
        payload['scans'] = chunk.scans
        return payload

    def to_dict(self) -> Dict[str, Any]:
        return {
            'sourceKey': self.source_key,
            'device': self.device,
            'comment': self.comment,
            'targetType': self.target_type,
            'targetName': self.target_name,
            'total': self.total,
            'chunkSize': self.chunk_size,
            'createdAt': self.created_at,
            'chunks': [chunk.to_dict() for chunk in self.chunks],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "UploadSession":
        return cls(
            source_key=data['sourceKey'],
            device=dict(data.get('device', {})),
            total=int(data.get('total', 0)),
            chunk_size=int(data.get('chunkSize', 0)),
            chunks=[UploadChunk.from_dict(c) for c in data.get('chunks', [])],
            comment=data.get('comment'),
            target_type=data.get('targetType'),
            target_name=data.get('targetName'),
            created_at=data.get('createdAt') or now_iso(),
        )


@dataclass
class SendReport:
    """전송 완료 결과"""
    source_key: str
    total_sent: int
    chunk_count: int
    resumed: bool = False
