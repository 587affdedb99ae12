"""
エラー定義
HTTPステータスとの対応もここで管理する
"""
from typing import Optional


class PomoflowError(Exception):
    """Pomoflow共通の基底エラー"""

    status_code = 500
    default_message = "Unexpected error"

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class ValidationError(PomoflowError):
    """入力値の不正（400）"""
    status_code = 400
    default_message = "Invalid input"


class AuthenticationError(PomoflowError):
    """セッションなし・無効（401）"""
    status_code = 401
    default_message = "User not authenticated"


class AuthorizationError(PomoflowError):
    """所有者違い・プラン不足（403）"""
    status_code = 403
    default_message = "Not authorized"


ForbiddenError = AuthorizationError


class NotFoundError(PomoflowError):
    """対象が存在しない（404）"""
    status_code = 404
    default_message = "Not found"


class TransientIOError(PomoflowError):
    """通信エラー・サーバーエラー（原因不明の失敗）"""
    status_code = 503
    default_message = "Server error"


_STATUS_MAP = {
    400: ValidationError,
    401: AuthenticationError,
    403: AuthorizationError,
    404: NotFoundError,
}


def error_for_status(status_code: int, message: Optional[str] = None) -> PomoflowError:
    """HTTPステータスコードから対応するエラーを生成"""
    error_class = _STATUS_MAP.get(status_code, TransientIOError)
    if error_class is TransientIOError and not message:
        message = f"Server error ({status_code})"
    return error_class(message)
