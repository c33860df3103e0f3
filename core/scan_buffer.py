"""스캔 버퍼 및 폴더/왜건 그룹 관리 모듈"""

from typing import Any, Dict, Iterable, List, Optional

from core.models import (
    BUFFER_SOURCE_KEY, KIND_BUFFER, KIND_FOLDER, KIND_TRAIN, KIND_WAGON,
    TARGET_PRISMA, TARGET_TYPES,
    Folder, ScanGroup, ScanItem, SendSource, Wagon, generate_id,
)
from utils.exceptions import StorageError, ValidationError

SCAN_ITEMS_KEY = 'scan_items'
SCAN_FOLDERS_KEY = 'scan_folders'

BUFFER_LABEL = '임시 버퍼'


def train_source_key(folder_id: str) -> str:
    return f"train:{folder_id}"


def wagon_source_key(folder_id: str, wagon_id: str) -> str:
    return f"wagon:{folder_id}:{wagon_id}"


def source_kind_for_key(source_key: str) -> str:
    """원본 키 접두어로 원본 종류를 구합니다."""
    if source_key == BUFFER_SOURCE_KEY:
        return KIND_BUFFER
    if source_key.startswith('train:'):
        return KIND_TRAIN
    if source_key.startswith('wagon:'):
        return KIND_WAGON
    return KIND_FOLDER


class ScanBuffer:
    """임시 스캔 버퍼와 폴더(prisma/train), 왜건을 관리하고 저장소에 유지합니다."""

    def __init__(self, store, event_logger=None):
        self.store = store
        self.event_logger = event_logger
        self.items: List[ScanItem] = []
        self.folders: List[Folder] = []
        self._hydrate()

    # ------------------------------------------------------------------
    # 저장/복원
    # ------------------------------------------------------------------
    def _hydrate(self):
        try:
            raw_items = self.store.get(SCAN_ITEMS_KEY, [])
            raw_folders = self.store.get(SCAN_FOLDERS_KEY, [])
            self.items = [ScanItem.from_dict(item) for item in raw_items or []]
            self.folders = [Folder.from_dict(folder) for folder in raw_folders or []]
        except (StorageError, KeyError, TypeError) as e:
            print(f"스캔 데이터 복원 실패: {e}")
            self.items, self.folders = [], []
            self._log('SCAN_BUFFER_RESTORE_FAILED', {'error': str(e)})

    def _persist_items(self):
        self.store.set(SCAN_ITEMS_KEY, [item.to_dict() for item in self.items])

    def _persist_folders(self):
        self.store.set(SCAN_FOLDERS_KEY, [folder.to_dict() for folder in self.folders])

    def _log(self, event_type: str, detail: Optional[Dict[str, Any]] = None):
        if self.event_logger:
            self.event_logger.log_event(event_type, detail)

    # ------------------------------------------------------------------
    # 버퍼
    # ------------------------------------------------------------------
    @property
    def last_scan(self) -> Optional[ScanItem]:
        return self.items[-1] if self.items else None

    def add(self, item: ScanItem) -> ScanItem:
        self.items.append(item)
        self._persist_items()
        return item

    def remove(self, scan_id: str) -> bool:
        before = len(self.items)
        self.items = [item for item in self.items if item.id != scan_id]
        if len(self.items) == before:
            return False
        self._persist_items()
        return True

    def clear(self) -> int:
        count = len(self.items)
        self.items = []
        self._persist_items()
        self._log('SCAN_BUFFER_CLEARED', {'count': count})
        return count

    # ------------------------------------------------------------------
    # 폴더 / 왜건
    # ------------------------------------------------------------------
    def get_folder(self, folder_id: str) -> Folder:
        folder = next((f for f in self.folders if f.id == folder_id), None)
        if folder is None:
            raise ValidationError(f"폴더를 찾을 수 없습니다: {folder_id}")
        return folder

    def get_wagon(self, folder_id: str, wagon_id: str) -> Wagon:
        folder = self.get_folder(folder_id)
        wagon = folder.find_wagon(wagon_id)
        if wagon is None:
            raise ValidationError(f"왜건을 찾을 수 없습니다: {wagon_id}")
        return wagon

    def create_folder(self, name: str, target: str = TARGET_PRISMA) -> Folder:
        name = (name or '').strip()
        if not name:
            raise ValidationError("폴더 이름을 입력하세요.")
        if target not in TARGET_TYPES:
            raise ValidationError(f"알 수 없는 폴더 유형: {target}")
        folder = Folder(id=generate_id(), name=name, target=target)
        self.folders.append(folder)
        self._persist_folders()
        self._log('FOLDER_CREATED', {'id': folder.id, 'name': name, 'target': target})
        return folder

    def rename_folder(self, folder_id: str, name: str) -> Folder:
        name = (name or '').strip()
        if not name:
            raise ValidationError("폴더 이름을 입력하세요.")
        folder = self.get_folder(folder_id)
        folder.name = name
        self._persist_folders()
        return folder

    def delete_folder(self, folder_id: str) -> Folder:
        """폴더를 삭제합니다. 이미 만들어진 업로드 세션은 영향을 받지 않습니다."""
        folder = self.get_folder(folder_id)
        self.folders.remove(folder)
        self._persist_folders()
        self._log('FOLDER_DELETED', {'id': folder_id, 'scans': folder.scan_count})
        return folder

    def add_wagon(self, folder_id: str, name: str) -> Wagon:
        folder = self.get_folder(folder_id)
        if not folder.is_train:
            raise ValidationError("왜건은 train 폴더에만 추가할 수 있습니다.")
        name = (name or '').strip()
        if not name:
            raise ValidationError("왜건 이름을 입력하세요.")
        wagon = Wagon(id=generate_id(), name=name)
        folder.wagons.append(wagon)
        self._persist_folders()
        return wagon

    def delete_wagon(self, folder_id: str, wagon_id: str) -> Wagon:
        folder = self.get_folder(folder_id)
        wagon = self.get_wagon(folder_id, wagon_id)
        folder.wagons.remove(wagon)
        self._persist_folders()
        self._log('WAGON_DELETED', {'folder': folder_id, 'id': wagon_id, 'scans': len(wagon.scans)})
        return wagon

    def remove_from_folder(self, folder_id: str, scan_id: str) -> bool:
        folder = self.get_folder(folder_id)
        before = len(folder.scans)
        folder.scans = [scan for scan in folder.scans if scan.id != scan_id]
        if len(folder.scans) == before:
            return False
        self._persist_folders()
        return True

    def clear_folder(self, folder_id: str) -> int:
        folder = self.get_folder(folder_id)
        count = folder.scan_count
        folder.scans = []
        for wagon in folder.wagons:
            wagon.scans = []
        self._persist_folders()
        return count

    def remove_from_wagon(self, folder_id: str, wagon_id: str, scan_id: str) -> bool:
        wagon = self.get_wagon(folder_id, wagon_id)
        before = len(wagon.scans)
        wagon.scans = [scan for scan in wagon.scans if scan.id != scan_id]
        if len(wagon.scans) == before:
            return False
        self._persist_folders()
        return True

    def clear_wagon(self, folder_id: str, wagon_id: str) -> int:
        wagon = self.get_wagon(folder_id, wagon_id)
        count = len(wagon.scans)
        wagon.scans = []
        self._persist_folders()
        return count

    # ------------------------------------------------------------------
    # 이동 (ID와 스캔 내용은 그대로 유지)
    # ------------------------------------------------------------------
    def _take_from_buffer(self, scan_ids: Iterable[str]) -> List[ScanItem]:
        wanted = set(scan_ids)
        moved = [item for item in self.items if item.id in wanted]
        self.items = [item for item in self.items if item.id not in wanted]
        return moved

    def move_to_folder(self, scan_ids: Iterable[str], folder_id: str) -> int:
        folder = self.get_folder(folder_id)
        if folder.is_train:
            raise ValidationError("train 폴더에는 왜건을 지정해야 합니다.")
        moved = self._take_from_buffer(scan_ids)
        folder.scans.extend(moved)
        self._persist_folders()
        self._persist_items()
        return len(moved)

    def move_to_wagon(self, scan_ids: Iterable[str], folder_id: str, wagon_id: str) -> int:
        wagon = self.get_wagon(folder_id, wagon_id)
        moved = self._take_from_buffer(scan_ids)
        wagon.scans.extend(moved)
        self._persist_folders()
        self._persist_items()
        return len(moved)

    def move_to_buffer(self, scan_ids: Iterable[str], folder_id: str, wagon_id: Optional[str] = None) -> int:
        wanted = set(scan_ids)
        holder = self.get_wagon(folder_id, wagon_id) if wagon_id else self.get_folder(folder_id)
        moved = [scan for scan in holder.scans if scan.id in wanted]
        holder.scans = [scan for scan in holder.scans if scan.id not in wanted]
        self.items.extend(moved)
        self._persist_folders()
        self._persist_items()
        return len(moved)

    # ------------------------------------------------------------------
    # 업로드 원본 조회
    # ------------------------------------------------------------------
    def source_options(self) -> List[SendSource]:
        """전송 가능한 모든 원본을 화면 표시 순서대로 반환합니다."""
        options = [self._buffer_source()]
        for folder in self.folders:
            if folder.is_train:
                options.append(self._train_source(folder))
                for wagon in folder.wagons:
                    options.append(self._wagon_source(folder, wagon))
            else:
                options.append(self._folder_source(folder))
        return options

    def get_source(self, source_key: str) -> SendSource:
        """원본 키에 해당하는 현재 스캔 목록을 반환합니다."""
        if source_key == BUFFER_SOURCE_KEY:
            return self._buffer_source()
        if source_key.startswith('train:'):
            folder = self.get_folder(source_key[len('train:'):])
            if not folder.is_train:
                raise ValidationError(f"train 폴더가 아닙니다: {folder.name}")
            return self._train_source(folder)
        if source_key.startswith('wagon:'):
            parts = source_key.split(':', 2)
            if len(parts) != 3:
                raise ValidationError(f"잘못된 원본 키: {source_key}")
            folder = self.get_folder(parts[1])
            return self._wagon_source(folder, self.get_wagon(parts[1], parts[2]))
        folder = next((f for f in self.folders if f.id == source_key and not f.is_train), None)
        if folder is None:
            raise ValidationError(f"알 수 없는 원본: {source_key}")
        return self._folder_source(folder)

    def _buffer_source(self) -> SendSource:
        return SendSource(BUFFER_SOURCE_KEY, KIND_BUFFER, BUFFER_LABEL, [ScanGroup(list(self.items))])

    def _folder_source(self, folder: Folder) -> SendSource:
        return SendSource(folder.id, KIND_FOLDER, folder.name, [ScanGroup(list(folder.scans))],
                          folder_name=folder.name)

    def _train_source(self, folder: Folder) -> SendSource:
        groups = [ScanGroup(list(wagon.scans), wagon.name) for wagon in folder.wagons if wagon.scans]
        return SendSource(train_source_key(folder.id), KIND_TRAIN, folder.name, groups,
                          folder_name=folder.name)

    def _wagon_source(self, folder: Folder, wagon: Wagon) -> SendSource:
        return SendSource(wagon_source_key(folder.id, wagon.id), KIND_WAGON,
                          f"{folder.name} / {wagon.name}", [ScanGroup(list(wagon.scans), wagon.name)],
                          folder_name=folder.name)
