from models.account import Account, UserRole
from models.store_node import StoreNode
from models.log import SystemLog, ErrorLog, UserActivityLog, LogLevel, LogCategory

__all__ = ["Account", "UserRole", "StoreNode", "SystemLog", "ErrorLog", "UserActivityLog", "LogLevel", "LogCategory"]
