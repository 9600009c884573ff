from matchsync import db


class SyncSetting(db.Model):
    """Small key/value rows for local sync state such as the last session id."""
    __tablename__ = 'sync_setting'
    key = db.Column(db.String(128), primary_key=True)
    value = db.Column(db.String(256), nullable=False)
