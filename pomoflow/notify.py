"""
通知・アラート音
OSのコマンドで読み上げ／ベル音を鳴らす（失敗しても例外は呼び出し側で握る）
"""
import asyncio
import logging
import platform
import subprocess
import sys

logger = logging.getLogger(__name__)


def speak_sync(text: str):
    """テキストを読み上げ（Windows / macOS のみ）"""
    system = platform.system()
    if system == "Windows":
        cmd = [
            "powershell", "-NoProfile", "-ExecutionPolicy", "Bypass", "-Command",
            f"Add-Type -AssemblyName System.Speech; (New-Object System.Speech.Synthesis.SpeechSynthesizer).Speak('{text}');"
        ]
        subprocess.run(cmd, creationflags=0x08000000, check=False)
    elif system == "Darwin":
        subprocess.run(["say", text], check=False)
    else:
        logger.debug("読み上げ非対応のOS: %s", system)


class SystemNotifier:
    """デスクトップ向けの通知"""

    def __init__(self, speak: bool = True):
        self.speak = speak

    async def notify(self, title: str, body: str = ""):
        logger.info("%s: %s", title, body)
        if self.speak:
            await asyncio.to_thread(speak_sync, title)

    async def play_alert(self):
        sys.stdout.write("\a")
        sys.stdout.flush()


class NullNotifier:
    """何もしない通知（テスト・ヘッドレス用）"""

    async def notify(self, title: str, body: str = ""):
        pass

    async def play_alert(self):
        pass
