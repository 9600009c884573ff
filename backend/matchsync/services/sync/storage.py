from typing import Dict, Optional

SESSION_KEY_SUFFIX = ':session_id'


class MemoryStore:
    """Key/value store kept in process memory."""

    def __init__(self, initial: Optional[Dict[str, str]] = None):
        self._data = dict(initial or {})

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value

    def delete(self, key: str) -> None:
        self._data.pop(key, None)

    def key_for(self, value: str, suffix: str = SESSION_KEY_SUFFIX) -> Optional[str]:
        for key, stored in self._data.items():
            if key.endswith(suffix) and stored == value:
                return key
        return None


class SqlStore:
    """Key/value store backed by the sync_setting table.

    Coordinator callbacks run on background tasks, so every call pushes its
    own application context.
    """

    def __init__(self, app):
        self.app = app

    def get(self, key: str) -> Optional[str]:
        from matchsync import db
        from matchsync.models import SyncSetting
        with self.app.app_context():
            row = db.session.get(SyncSetting, key)
            return row.value if row else None

    def set(self, key: str, value: str) -> None:
        from matchsync import db
        from matchsync.models import SyncSetting
        with self.app.app_context():
            try:
                row = db.session.get(SyncSetting, key)
                if row is None:
                    row = SyncSetting(key=key, value=value)
                else:
                    row.value = value
                db.session.add(row)
                db.session.commit()
            except Exception:
                db.session.rollback()
                raise

    def delete(self, key: str) -> None:
        from matchsync import db
        from matchsync.models import SyncSetting
        with self.app.app_context():
            try:
                SyncSetting.query.filter_by(key=key).delete()
                db.session.commit()
            except Exception:
                db.session.rollback()
                raise

    def key_for(self, value: str, suffix: str = SESSION_KEY_SUFFIX) -> Optional[str]:
        """Key of the first row ending in suffix that holds value."""
        from matchsync.models import SyncSetting
        with self.app.app_context():
            row = SyncSetting.query.filter(
                SyncSetting.key.like(f'%{suffix}'),
                SyncSetting.value == value,
            ).first()
            return row.key if row else None
