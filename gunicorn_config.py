"""
Gunicorn config.

when_ready hook runs a post-deploy smoke test against localhost once the
server is accepting connections.  There is no background worker: every
request is handled on its own and alerts are computed on demand.
"""

import logging
import os
import threading

bind = f"0.0.0.0:{os.environ.get('PORT', '8000')}"
workers = int(os.environ.get("WEB_CONCURRENCY", "2"))
timeout = int(os.environ.get("GUNICORN_TIMEOUT", "30"))


def when_ready(server):
    """Run smoke test in a background thread once gunicorn is listening.

    Set SMOKE_ON_DEPLOY=0 to skip it (e.g. local runs against an empty DB).
    """
    if os.environ.get("SMOKE_ON_DEPLOY", "1") == "0":
        return
    port = os.environ.get("PORT", "8000")
    base_url = f"http://127.0.0.1:{port}"

    def _run_smoke():
        import time
        time.sleep(2)  # brief grace period for workers to finish forking
        logger = logging.getLogger("gunicorn.error")
        try:
            from smoke_test import run_tests
            logger.info("Post-deploy smoke test starting against %s", base_url)
            ok = run_tests(base_url)
            if ok:
                logger.info("Post-deploy smoke test PASSED")
            else:
                logger.error("Post-deploy smoke test FAILED")
        except Exception:
            logger.exception("Post-deploy smoke test crashed")

    t = threading.Thread(target=_run_smoke, daemon=True)
    t.start()
