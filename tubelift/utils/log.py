from datetime import datetime

_PREFIXES = {
    "INFO": "ℹ️ ",
    "SUCCESS": "✅",
    "ERROR": "❌",
    "WARNING": "⚠️ ",
    "PROGRESS": "⏳"
}


def log_event(component: str, message: str, level: str = "INFO"):
    """Log with timestamp and component context"""
    timestamp = datetime.now().strftime("%H:%M:%S")
    prefix = _PREFIXES.get(level, "")
    print(f"[{timestamp}] [{component}] {prefix} {message}")
