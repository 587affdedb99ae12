"""
タイマー制御ロジック
集中 → 短い休憩 / 長い休憩 → 集中 を繰り返すステートマシン
"""
import asyncio
import logging
from enum import Enum
from typing import Callable, Dict, Optional

from ..errors import PomoflowError
from .cycle_counter import CycleCounter
from .task_store import TaskStoreFacade

logger = logging.getLogger(__name__)


class TimerMode(Enum):
    FOCUS = "focus"
    SHORT_BREAK = "short_break"
    LONG_BREAK = "long_break"


DEFAULT_DURATIONS = {
    TimerMode.FOCUS: 25 * 60,
    TimerMode.SHORT_BREAK: 5 * 60,
    TimerMode.LONG_BREAK: 15 * 60,
}

# 通知文言（モード切り替え後に表示）
NOTIFICATION_TEXT = {
    TimerMode.FOCUS: ("Pomodoro", "Back to focus time!"),
    TimerMode.SHORT_BREAK: ("Short Break", "Take a short break."),
    TimerMode.LONG_BREAK: ("Long Break", "Time for a well-earned rest!"),
}


class SessionStateMachine:
    """ポモドーロタイマー制御クラス"""

    def __init__(self, cycle_counter: CycleCounter,
                 task_facade: Optional[TaskStoreFacade] = None,
                 notifier=None,
                 durations: Optional[Dict[TimerMode, int]] = None,
                 long_break_interval: int = 4,
                 tick_interval: float = 1.0):
        self.cycle_counter = cycle_counter
        self.task_facade = task_facade
        self.notifier = notifier
        self.durations = dict(DEFAULT_DURATIONS)
        if durations:
            self.durations.update(durations)
        self.long_break_interval = long_break_interval
        self.tick_interval = tick_interval  # 1秒分のカウントにかける実時間

        self.mode: TimerMode = TimerMode.FOCUS
        self.remaining_seconds: int = self.durations[TimerMode.FOCUS]
        self.is_running: bool = False
        self._tick_task: Optional[asyncio.Task] = None
        self._completing: bool = False  # フェーズ完了処理中

        # コールバック
        self.on_tick: Optional[Callable] = None
        self.on_mode_change: Optional[Callable] = None
        self.on_cycle_recorded: Optional[Callable] = None

    @classmethod
    def from_settings(cls, settings, cycle_counter: CycleCounter,
                      task_facade: Optional[TaskStoreFacade] = None, notifier=None,
                      tick_interval: float = 1.0) -> "SessionStateMachine":
        """設定（分単位）からタイマーを生成"""
        return cls(
            cycle_counter,
            task_facade=task_facade,
            notifier=notifier,
            durations={
                TimerMode.FOCUS: settings.focus_minutes * 60,
                TimerMode.SHORT_BREAK: settings.short_break_minutes * 60,
                TimerMode.LONG_BREAK: settings.long_break_minutes * 60,
            },
            long_break_interval=settings.long_break_interval,
            tick_interval=tick_interval,
        )

    # === 操作 ===

    def start(self):
        """タイマーを開始（イベントループ上で呼ぶこと）"""
        if self.is_running or self._completing:
            return
        if self.remaining_seconds <= 0:
            self.remaining_seconds = self.durations[self.mode]
        self.is_running = True
        self._tick_task = asyncio.get_running_loop().create_task(self._countdown())

    def pause(self):
        """タイマーを一時停止（モードは変えない）"""
        self.is_running = False
        self._cancel_tick()

    def resume(self):
        """タイマーを再開"""
        if self.remaining_seconds > 0 and not self.is_running:
            self.start()

    def switch_mode(self, mode: TimerMode):
        """手動でモードを切り替え（残り時間をリセットして停止）"""
        self.is_running = False
        self._cancel_tick()
        self._set_mode(mode)

    def stop(self):
        """タイマーを停止して集中モードに戻す"""
        self.switch_mode(TimerMode.FOCUS)

    def _cancel_tick(self):
        if self._tick_task is not None and not self._tick_task.done():
            self._tick_task.cancel()
        self._tick_task = None

    def _set_mode(self, mode: TimerMode):
        previous = self.mode
        self.mode = mode
        self.remaining_seconds = self.durations[mode]
        if self.on_mode_change:
            self.on_mode_change(previous, mode)

    # === カウントダウン ===

    async def _countdown(self):
        """カウントダウン処理"""
        while self.is_running and self.remaining_seconds > 0:
            await asyncio.sleep(self.tick_interval)
            if not self.is_running:
                return
            self.remaining_seconds -= 1
            if self.on_tick:
                self.on_tick(self.remaining_seconds, self.mode)

        if self.remaining_seconds == 0 and self.is_running:
            # 完了処理は一時停止・モード切り替えで中断させない
            self.is_running = False
            self._tick_task = None
            await self.complete_phase()

    async def complete_phase(self) -> TimerMode:
        """現在のモードが0になった時の遷移（遷移中の start() は無視する）"""
        self._completing = True
        try:
            finished = self.mode
            if finished == TimerMode.FOCUS:
                count = await self._record_cycle()
                await self._increment_current_task()
                if count % self.long_break_interval == 0:
                    next_mode = TimerMode.LONG_BREAK
                else:
                    next_mode = TimerMode.SHORT_BREAK
            else:
                next_mode = TimerMode.FOCUS

            self.is_running = False
            self._cancel_tick()
            self._set_mode(next_mode)
        finally:
            self._completing = False
        await self._alert(next_mode)
        return next_mode

    async def _record_cycle(self) -> int:
        """サイクルを記録（失敗時は最後に確認できた回数 + 1 で進める）"""
        try:
            count = await self.cycle_counter.record_cycle()
        except PomoflowError as e:
            count = self.cycle_counter.count + 1
            self.cycle_counter.count = count
            logger.warning("サイクル記録に失敗したため推定値 %d で続行します: %s", count, e.message)
        if self.on_cycle_recorded:
            self.on_cycle_recorded(count)
        return count

    async def _increment_current_task(self):
        if self.task_facade is None:
            return
        task_id = self.task_facade.current_task_id
        if not task_id:
            return
        try:
            await self.task_facade.increment_session_count(task_id)
        except PomoflowError as e:
            logger.warning("選択中タスクのポモドーロ加算に失敗: %s", e.message)

    async def _alert(self, mode: TimerMode):
        """通知と音（失敗しても遷移は止めない）"""
        if self.notifier is None:
            return
        title, body = NOTIFICATION_TEXT[mode]
        try:
            await self.notifier.notify(title, body)
        except Exception:
            logger.warning("通知の表示に失敗", exc_info=True)
        try:
            await self.notifier.play_alert()
        except Exception:
            logger.warning("アラート音の再生に失敗", exc_info=True)

    # === 表示用 ===

    def get_formatted_time(self) -> str:
        """残り時間を整形（MM:SS）"""
        minutes = self.remaining_seconds // 60
        seconds = self.remaining_seconds % 60
        return f"{minutes:02d}:{seconds:02d}"

    def get_progress(self) -> float:
        """現在のモードの進捗（0.0 ~ 1.0）"""
        total = self.durations[self.mode]
        if total <= 0:
            return 1.0
        return 1.0 - (self.remaining_seconds / total)
