# main.py (headless client on a qasync event loop)
import asyncio
import sys

import qasync
from PySide6.QtCore import QCoreApplication

from tnb_chat.api.client import get_supabase_client, init_supabase_client
from tnb_chat.api.errors import StoreError
from tnb_chat.api.supabase_store import create_store
from tnb_chat.core.session_controller import SessionController
from tnb_chat.utils.logger import check_log_size, log_event


def _print_signal(name: str):
    return lambda *args: print(f"[{name}] {', '.join(str(a) for a in args)}")


async def main(argv):
    """Sign in with `main.py <email> <password>`, or resume the stored session, then run until Qt quits."""
    log_event("--- [MAIN ASYNC START] ---")
    controller = None
    store = None
    try:
        app = QCoreApplication.instance()

        log_event("[MAIN ASYNC] Initializing Supabase client...")
        init_supabase_client()
        supabase_instance = get_supabase_client()
        if not supabase_instance:
            log_event("[CRITICAL][MAIN ASYNC] Supabase client was not initialized.")
            raise RuntimeError("Supabase client initialization failed.")

        store = create_store(supabase_instance)
        await store.connect()
        controller = SessionController(store)
        for signal_name in ("login_successful", "login_failed", "logout_finished", "status_update_signal",
                            "operation_failed", "online_users_updated", "incoming_call", "call_state_changed"):
            getattr(controller, signal_name).connect(_print_signal(signal_name))

        if len(argv) >= 3:
            log_event(f"[MAIN ASYNC] Signing in as {argv[1]}...")
            await controller._perform_login(argv[1], argv[2])
        else:
            await controller.check_existing_session()

        quit_event = asyncio.Event()

        def on_quit():
            log_event("[MAIN ASYNC] Quit signal received from Qt.")
            quit_event.set()
        app.aboutToQuit.connect(on_quit)

        log_event("[MAIN ASYNC] Client running, waiting for quit signal...")
        await quit_event.wait()
    except (RuntimeError, StoreError) as e:
        log_event(f"[CRITICAL][MAIN ASYNC] Error during async main execution: {e}", exc_info=True)
        print(f"Startup failed: {e}", file=sys.stderr)
    finally:
        log_event("[MAIN ASYNC] Cleaning up...")
        if controller is not None:
            controller.close()
        if store is not None:
            await store.close()
        log_event("--- [MAIN ASYNC END] ---")


if __name__ == "__main__":
    check_log_size()
    log_event(f"[MAIN_ENTRY] Client starting with args: {sys.argv[:2]}")
    exit_code = 1
    # The Qt event loop needs the application object before qasync builds the loop
    qt_app = QCoreApplication.instance() or QCoreApplication(sys.argv)
    try:
        exit_code = qasync.run(main(sys.argv)) or 0
    except KeyboardInterrupt:
        log_event("[MAIN_ENTRY] Interrupted by user (KeyboardInterrupt).")
        exit_code = 0
    finally:
        log_event(f"[MAIN_ENTRY] Client exiting with code: {exit_code}")
        sys.exit(exit_code)
