import tkinter as tk
from tkinter import ttk, messagebox
import asyncio
import os
import sys
import uuid
from typing import Optional

# 분리된 모듈들 import
from core.epoch_timer import EpochTimer, format_hhmmss
from core.ledger import SegmentLedger
from core.ledger_factory import create_ledger_store
from core.models import Phase
from core.recovery import RecoveryStore, state_file_name
from core.session import SessionCoordinator
from ui.base_ui import UIUtils, StyleManager
from ui.components import ScannerInputComponent, IdentityCardComponent, StopwatchComponent, StepIndicatorComponent
from ui.dialogs import ask_pass_remark, ask_leak_report
from utils.config import ConfigManager
from utils.exceptions import PneumaticTestError, ConfigurationError, ValidationError, LedgerTimeoutError
from utils.file_handler import resource_path
from utils.logger import EventLogger
from utils.async_helpers import create_safe_task
import pygame

# 전역 설정 매니저 인스턴스
config = ConfigManager()

# #####################################################################
# # 메인 어플리케이션
# #####################################################################

class PneumaticTestProgram:
    """기밀 시험 스테이션 GUI 어플리케이션 클래스입니다."""
    DEFAULT_FONT = 'Malgun Gothic'
    UI_POLL_SEC = 0.02
    STEPS = ["작업자", "용기", "시험"]

    COLOR_BG = StyleManager.COLOR_BG
    COLOR_TEXT = StyleManager.COLOR_TEXT
    COLOR_PRIMARY = StyleManager.COLOR_PRIMARY
    COLOR_SUCCESS = StyleManager.COLOR_SUCCESS
    COLOR_DEFECT = StyleManager.COLOR_DEFECT

    def __init__(self):
        self.root = tk.Tk()
        app_title = f"{config.get('ui.window_title', '기밀 시험 타이머')} ({config.get('app.version', 'v1.0.0')})"
        self.root.title(app_title)
        self.root.geometry(config.get('ui.window_geometry', '1000x720'))
        self.root.configure(bg=self.COLOR_BG)
        self.scale_factor = float(config.get('ui.scale_factor', 1.0))
        self.is_closing = False

        pygame.init()
        pygame.mixer.init()
        try:
            self.success_sound = pygame.mixer.Sound(resource_path('assets/success.wav'))
            self.error_sound = pygame.mixer.Sound(resource_path('assets/error.wav'))
        except (pygame.error, FileNotFoundError) as e:
            print(f"사운드 파일을 로드할 수 없습니다: {e}")
            self.success_sound = self.error_sound = None

        try:
            self.computer_id = hex(uuid.getnode())
        except Exception:
            import socket
            self.computer_id = socket.gethostname()

        state_dir = config.resolve_path('station.state_dir', 'state')
        self.event_logger = EventLogger(config.resolve_path('station.log_dir', 'logs'), self.computer_id)
        self.refresh_ms = int(config.get('timer.refresh_ms', 250))
        self.leak_reasons = list(config.get('leak.reasons', ["Others"]))
        if "Others" not in self.leak_reasons:
            self.leak_reasons.append("Others")

        try:
            store = create_ledger_store(config)
        except ConfigurationError as e:
            messagebox.showerror("설정 오류", f"{e}\n\nconfig.json의 ledger 항목을 확인해주세요.")
            self.event_logger.stop_logger()
            self.root.destroy()
            raise

        self.timer = EpochTimer()
        self.coordinator = SessionCoordinator(
            SegmentLedger(store),
            RecoveryStore(os.path.join(state_dir, state_file_name(self.computer_id))),
            timer=self.timer,
            event_logger=self.event_logger,
            timeout_sec=float(config.get('ledger.timeout_sec', 12)),
        )

        self.status_message_job: Optional[str] = None
        self.stopwatch_job: Optional[str] = None

        self.style_manager = StyleManager(self.DEFAULT_FONT, self.scale_factor)
        self.style_manager.setup_default_styles()
        self._setup_core_ui_structure()

        phase = self.coordinator.restore()
        if phase is Phase.RUNNING:
            self.show_status_message("새로고침 전의 시험을 이어서 진행합니다.", self.COLOR_PRIMARY)
        self._apply_phase()
        self._update_stopwatch()

        # 창이 다시 보이거나 포커스를 얻으면 즉시 시작 시각 기준으로 다시 계산
        self.root.bind('<Map>', self._refresh_stopwatch_now, add='+')
        self.root.bind('<FocusIn>', self._refresh_stopwatch_now, add='+')
        self.root.protocol("WM_DELETE_WINDOW", self.on_closing)

    # ------------------------------------------------------------------
    # 화면 구성
    # ------------------------------------------------------------------

    def _setup_core_ui_structure(self):
        self.step_indicator = StepIndicatorComponent(self.root, self.STEPS).build()

        self.main_frame = ttk.Frame(self.root, style='TFrame')
        self.main_frame.pack(fill=tk.BOTH, expand=True, padx=10, pady=10)

        self.operator_page = ttk.Frame(self.main_frame, style='TFrame')
        self.vessel_page = ttk.Frame(self.main_frame, style='TFrame')
        self.timer_page = ttk.Frame(self.main_frame, style='TFrame')
        self.pages = [self.operator_page, self.vessel_page, self.timer_page]

        self._create_operator_page(self.operator_page)
        self._create_vessel_page(self.vessel_page)
        self._create_timer_page(self.timer_page)

        status_bar = ttk.Frame(self.root, style='TFrame')
        status_bar.pack(fill=tk.X, side=tk.BOTTOM, padx=10, pady=(0, 10))
        self.status_label = tk.Label(status_bar, text="준비", anchor='w', bg=self.COLOR_BG, fg=self.COLOR_TEXT,
                                     font=(self.DEFAULT_FONT, int(12 * self.scale_factor)))
        self.status_label.pack(fill=tk.X)

    def _create_operator_page(self, page):
        ttk.Label(page, text="작업자 QR을 스캔하세요", style='Title.TLabel').pack(pady=(20, 10))
        self.operator_scanner = ScannerInputComponent(page, "작업자 QR:").build()
        self.operator_scanner.bind_scan_event(self._on_operator_scan)
        self.operator_card = IdentityCardComponent(page, "작업자 정보", [
            ('employee_id', "사번"), ('employee_name', "이름"), ('station', "스테이션")]).build()

        manpower_frame = ttk.Frame(page)
        manpower_frame.pack(fill=tk.X, padx=10, pady=10)
        ttk.Label(manpower_frame, text="투입 인원:").pack(side=tk.LEFT)
        self.manpower_entry = ttk.Entry(manpower_frame, width=8, font=('Arial', 14))
        self.manpower_entry.pack(side=tk.LEFT, padx=(5, 0))
        self.manpower_entry.bind('<Return>', lambda e: self._on_confirm_operator())

        self.confirm_operator_button = ttk.Button(page, text="확인", command=self._on_confirm_operator)
        self.confirm_operator_button.pack(pady=20)

    def _create_vessel_page(self, page):
        ttk.Label(page, text="용기 QR을 스캔하세요", style='Title.TLabel').pack(pady=(20, 10))
        self.vessel_scanner = ScannerInputComponent(page, "용기 QR:").build()
        self.vessel_scanner.bind_scan_event(self._on_vessel_scan)
        self.vessel_card = IdentityCardComponent(page, "용기 정보", [
            ('project_name', "프로젝트"), ('serial', "시리얼"), ('vessel_type', "종류")]).build()
        self.confirm_vessel_button = ttk.Button(page, text="확인", command=self._on_confirm_vessel)
        self.confirm_vessel_button.pack(pady=20)

    def _create_timer_page(self, page):
        self.session_card = IdentityCardComponent(page, "시험 정보", [
            ('serial', "시리얼"), ('project_name', "프로젝트"), ('vessel_type', "종류"),
            ('operator', "작업자"), ('station', "스테이션"), ('manpower', "투입 인원")]).build()

        self.stopwatch = StopwatchComponent(page).build()

        buttons = ttk.Frame(page)
        buttons.pack(pady=10)
        self.start_button = ttk.Button(buttons, text="START", style='Start.TButton', command=self._on_start)
        self.pass_button = ttk.Button(buttons, text="PASS", style='Pass.TButton', command=self._on_pass)
        self.leak_button = ttk.Button(buttons, text="LEAK", style='Leak.TButton', command=self._on_leak)
        for button in (self.start_button, self.pass_button, self.leak_button):
            button.pack(side=tk.LEFT, padx=10, ipadx=int(10 * self.scale_factor), ipady=int(8 * self.scale_factor))

        self.segment_card = IdentityCardComponent(page, "구간", [
            ('segment_id', "구간 ID"), ('start_time', "시작 시각")]).build()

        self.reset_button = ttk.Button(page, text="작업자 변경 / 초기화", command=self._on_reset)
        self.reset_button.pack(pady=10)

    def _apply_phase(self):
        """현재 단계에 맞는 화면을 보여주고 버튼 상태를 갱신합니다."""
        state = self.coordinator.state
        page_index = {
            Phase.AWAITING_OPERATOR: 0,
            Phase.AWAITING_VESSEL: 1,
            Phase.READY: 2,
            Phase.RUNNING: 2,
        }[state.phase]

        for index, page in enumerate(self.pages):
            if index == page_index:
                page.pack(fill=tk.BOTH, expand=True)
            else:
                page.pack_forget()
        self.step_indicator.set_current(page_index)

        operator = state.operator
        vessel = state.vessel
        self.operator_card.update_values(operator.to_dict() if operator else {})
        self.vessel_card.update_values(vessel.to_dict() if vessel else {})
        self.session_card.update_values({
            'serial': vessel.serial if vessel else None,
            'project_name': vessel.project_name if vessel else None,
            'vessel_type': vessel.vessel_type.value if vessel else None,
            'operator': f"{operator.employee_name} ({operator.employee_id})" if operator else None,
            'station': operator.station if operator else None,
            'manpower': state.manpower,
        })
        self.segment_card.update_values({
            'segment_id': state.active_segment_id,
            'start_time': state.session_start_time,
        })
        if not state.running:
            self.stopwatch.show(format_hhmmss(0), paused=True)
        if page_index == 0 and state.manpower is not None and not self.manpower_entry.get():
            self.manpower_entry.insert(0, str(state.manpower))

        self._update_buttons()
        if page_index == 0:
            self.operator_scanner.focus_input()
        elif page_index == 1:
            self.vessel_scanner.focus_input()

    def _update_buttons(self):
        c = self.coordinator
        self.operator_scanner.set_enabled(c.can_scan_operator)
        UIUtils.set_enabled(self.manpower_entry, c.can_scan_operator)
        UIUtils.set_enabled(self.confirm_operator_button, c.can_confirm_operator)
        self.vessel_scanner.set_enabled(c.can_scan_vessel)
        UIUtils.set_enabled(self.confirm_vessel_button, c.can_confirm_vessel)
        UIUtils.set_enabled(self.start_button, c.can_start)
        UIUtils.set_enabled(self.pass_button, c.can_finish)
        UIUtils.set_enabled(self.leak_button, c.can_finish)
        UIUtils.set_enabled(self.reset_button, c.can_reset)

    def _clear_wizard_inputs(self):
        self.operator_scanner.clear_input()
        self.vessel_scanner.clear_input()
        self.manpower_entry.delete(0, tk.END)
        self.operator_scanner.set_status("스캔 대기 중...")
        self.vessel_scanner.set_status("스캔 대기 중...")

    # ------------------------------------------------------------------
    # 작업자/용기 확인
    # ------------------------------------------------------------------

    def _on_operator_scan(self, payload: str):
        if not self.coordinator.can_scan_operator:
            return
        try:
            operator = self.coordinator.scan_operator(payload)
        except ValidationError as e:
            self.operator_scanner.set_status(str(e), "error")
            self._play_error()
            return
        self.operator_card.update_values(operator.to_dict())
        self.operator_scanner.set_status("작업자 QR 확인. 투입 인원을 입력하고 확인을 누르세요.")
        self._update_buttons()
        self.manpower_entry.focus_set()

    def _on_confirm_operator(self):
        if not self.coordinator.can_confirm_operator:
            return
        try:
            self.coordinator.confirm_operator(self.manpower_entry.get())
        except ValidationError as e:
            UIUtils.show_error_message("입력 오류", str(e), parent=self.root)
            return
        self.vessel_scanner.set_status("용기 QR을 스캔하세요.")
        self._apply_phase()

    def _on_vessel_scan(self, payload: str):
        if not self.coordinator.can_scan_vessel:
            return
        try:
            vessel = self.coordinator.scan_vessel(payload)
        except ValidationError as e:
            self.vessel_scanner.set_status(str(e), "error")
            self._play_error()
            return
        self.vessel_card.update_values(vessel.to_dict())
        self.vessel_scanner.set_status("용기 QR 확인. 확인을 누르세요.")
        self._update_buttons()
        self.confirm_vessel_button.focus_set()

    def _on_confirm_vessel(self):
        if not self.coordinator.can_confirm_vessel:
            return
        self.coordinator.confirm_vessel()
        self.show_status_message("준비 완료. START를 눌러 시험을 시작하세요.", self.COLOR_PRIMARY)
        self._apply_phase()

    # ------------------------------------------------------------------
    # START / PASS / LEAK
    # ------------------------------------------------------------------

    def _spawn(self, coro, name: str):
        create_safe_task(coro, name=name, on_error=self._on_task_error)

    def _on_task_error(self, exc: BaseException):
        print(f"처리되지 않은 오류: {exc!r}")
        self._play_error()
        self.show_status_message(f"오류: {exc}", self.COLOR_DEFECT, duration=10000)
        self._apply_phase()

    def _on_start(self):
        if not self.coordinator.can_start:
            return
        self._disable_actions()
        self._spawn(self._start_async(), "start")

    async def _start_async(self):
        self.show_status_message("시험 시작 기록 중…", self.COLOR_PRIMARY, duration=60000)
        try:
            await self.coordinator.start()
        except PneumaticTestError as e:
            self._report_failure("START 실패", e)
        else:
            self._play_success()
            self.show_status_message("시험이 시작되었습니다.", self.COLOR_SUCCESS)
        finally:
            self._apply_phase()
            self._refresh_stopwatch_now()

    def _on_pass(self):
        if not self.coordinator.can_finish:
            return
        self.coordinator.begin_prompt("PASS")
        self._update_buttons()
        self._refresh_stopwatch_now()
        remark = ask_pass_remark(self.root)
        if remark is None:
            self.coordinator.cancel_prompt("PASS")
            self.show_status_message("PASS 취소. 스톱워치로 돌아갑니다.", self.COLOR_PRIMARY)
            self._update_buttons()
            self._refresh_stopwatch_now()
            return
        self._disable_actions()
        self._spawn(self._pass_async(remark), "pass")

    async def _pass_async(self, remark: str):
        self.show_status_message("PASS 기록 중…", self.COLOR_PRIMARY, duration=60000)
        try:
            end_time = await self.coordinator.pass_test(remark)
        except PneumaticTestError as e:
            self._report_failure("PASS 실패", e)
            self._apply_phase()
        else:
            self._play_success()
            self._clear_wizard_inputs()
            self._apply_phase()
            self.show_status_message(f"PASS 기록 완료 (종료 {end_time}). 다음 작업자를 스캔하세요.", self.COLOR_SUCCESS, duration=8000)
        finally:
            self._refresh_stopwatch_now()

    def _on_leak(self):
        if not self.coordinator.can_finish:
            return
        self.coordinator.begin_prompt("LEAK")
        self._update_buttons()
        self._refresh_stopwatch_now()
        report = ask_leak_report(self.root, self.leak_reasons)
        if report is None:
            self.coordinator.cancel_prompt("LEAK")
            self.show_status_message("LEAK 취소. 스톱워치로 돌아갑니다.", self.COLOR_PRIMARY)
            self._update_buttons()
            self._refresh_stopwatch_now()
            return
        self._disable_actions()
        self._spawn(self._leak_async(report.reason, report.remark), "leak")

    async def _leak_async(self, reason: str, remark: Optional[str]):
        self.show_status_message("LEAK 기록 중…", self.COLOR_PRIMARY, duration=60000)
        try:
            await self.coordinator.report_leak(reason, remark)
        except PneumaticTestError as e:
            self._report_failure("LEAK 실패", e)
            self._apply_phase()
        else:
            self._play_error()
            self._clear_wizard_inputs()
            self._apply_phase()
            self.show_status_message(f"LEAK 기록 완료 (사유: {reason}). 다음 시험 시작 시 누설 구간이 닫힙니다.", self.COLOR_DEFECT, duration=8000)
        finally:
            self._refresh_stopwatch_now()

    def _on_reset(self):
        if not self.coordinator.can_reset:
            return
        if not UIUtils.ask_yes_no("초기화", "작업자/용기 확인을 모두 지우고 처음부터 시작하시겠습니까?", parent=self.root):
            return
        self.coordinator.reset()
        self._clear_wizard_inputs()
        self.show_status_message("세션이 초기화되었습니다.", self.COLOR_DEFECT)
        self._apply_phase()

    def _report_failure(self, title: str, error: PneumaticTestError):
        self._play_error()
        hint = " 네트워크 상태를 확인한 뒤 다시 시도해주세요." if isinstance(error, LedgerTimeoutError) else ""
        self.show_status_message(f"{title}: {error}{hint}", self.COLOR_DEFECT, duration=15000)

    def _disable_actions(self):
        for button in (self.start_button, self.pass_button, self.leak_button, self.reset_button):
            UIUtils.set_enabled(button, False)

    # ------------------------------------------------------------------
    # 스톱워치 표시 (표시용 주기 갱신일 뿐, 경과 시간은 항상 시작 시각 기준으로 계산)
    # ------------------------------------------------------------------

    def _update_stopwatch(self):
        if self.is_closing:
            return
        if self.timer.refreshing:
            self.stopwatch.show(self.timer.display())
        self.stopwatch_job = self.root.after(self.refresh_ms, self._update_stopwatch)

    def _refresh_stopwatch_now(self, event=None):
        if self.is_closing:
            return
        if self.timer.start_epoch is not None:
            self.stopwatch.show(self.timer.display(), paused=not self.timer.refreshing)

    # ------------------------------------------------------------------
    # 상태 표시 / 사운드
    # ------------------------------------------------------------------

    def show_status_message(self, message: str, color: Optional[str] = None, duration: int = 4000):
        if self.is_closing or not self.root.winfo_exists():
            return
        if self.status_message_job:
            self.root.after_cancel(self.status_message_job)
        self.status_label['text'], self.status_label['fg'] = message, color or self.COLOR_TEXT
        self.status_message_job = self.root.after(duration, self._reset_status_message)

    def _reset_status_message(self):
        self.status_message_job = None
        if hasattr(self, 'status_label') and self.status_label.winfo_exists():
            self.status_label['text'], self.status_label['fg'] = "준비", self.COLOR_TEXT

    def _play_success(self):
        if config.get('sound.enabled', True) and self.success_sound:
            self.success_sound.play()

    def _play_error(self):
        if config.get('sound.enabled', True) and self.error_sound:
            self.error_sound.play()

    # ------------------------------------------------------------------
    # 실행 / 종료
    # ------------------------------------------------------------------

    def _cancel_all_jobs(self):
        for job_attr in ['status_message_job', 'stopwatch_job']:
            job_id = getattr(self, job_attr, None)
            if job_id:
                self.root.after_cancel(job_id)
                setattr(self, job_attr, None)

    def on_closing(self):
        msg = "프로그램을 종료하시겠습니까?"
        if self.coordinator.busy:
            msg += "\n\n원장 기록이 아직 진행 중입니다. 지금 종료하면 결과를 확인할 수 없습니다."
        elif self.coordinator.state.running:
            msg += "\n\n진행 중인 시험은 다음 실행 시 이어서 진행됩니다."
        if not messagebox.askokcancel("종료", msg):
            return
        self.is_closing = True
        self._cancel_all_jobs()
        self.event_logger.log_event('APP_EXIT', {'phase': self.coordinator.state.phase.value})
        self.event_logger.stop_logger()
        pygame.quit()
        self.root.destroy()

    async def run_async(self):
        """Tk 이벤트 처리와 asyncio 작업을 한 스레드에서 번갈아 실행합니다."""
        while not self.is_closing:
            try:
                self.root.update()
            except tk.TclError:
                break
            await asyncio.sleep(self.UI_POLL_SEC)

    def run(self):
        asyncio.run(self.run_async())


def main():
    try:
        app = PneumaticTestProgram()
    except ConfigurationError as e:
        print(f"설정 오류: {e}")
        sys.exit(1)
    app.run()


if __name__ == "__main__":
    main()
