from dataclasses import dataclass
import os
from dotenv import load_dotenv

@dataclass
class Config:
    listen_host: str
    listen_port: int
    use_tls: bool
    tls_cert: str
    tls_key: str
    db_path: str
    moderation_log_path: str
    access_log_path: str
    page_size: int = 10
    session_ttl: int = 86400

def load_config():
    load_dotenv(override=True)
    return Config(
        listen_host=os.getenv("QDB_LISTEN_HOST", "0.0.0.0"),
        listen_port=int(os.getenv("QDB_LISTEN_PORT", 4567)),
        use_tls=os.getenv("QDB_USE_TLS", "false").lower() == "true",
        tls_cert=os.getenv("QDB_TLS_CERT", "server.pem"),
        tls_key=os.getenv("QDB_TLS_KEY", "server.key"),
        db_path=os.getenv("QDB_DB_PATH", "qdb.sqlite3"),
        moderation_log_path=os.getenv("QDB_MODERATION_LOG", "log/moderation.log"),
        access_log_path=os.getenv("QDB_ACCESS_LOG", "log/access.log"),
        page_size=int(os.getenv("QDB_PAGE_SIZE", 10)),
        session_ttl=int(os.getenv("QDB_SESSION_TTL", 86400)),
    )
