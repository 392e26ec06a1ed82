import threading


class JobResult:
    """Handle on a job started with start_app_context_job."""

    def __init__(self):
        self.value = None
        self.error = None
        self.thread = None

    def wait(self, timeout=None):
        """Join the job, then return its value or re-raise its error."""
        self.thread.join(timeout)
        if self.thread.is_alive():
            raise TimeoutError("Job did not finish within %s seconds" % timeout)
        if self.error is not None:
            raise self.error
        return self.value


def start_daemon_thread(target, args=(), kwargs=None):
    """Start a daemon thread with a consistent helper API."""
    thread = threading.Thread(target=target, args=args, kwargs=kwargs or {}, daemon=True)
    thread.start()
    return thread


def start_app_context_job(app, target, args=(), kwargs=None, on_error=None):
    """
    Run a callable in a daemon thread inside the provided Flask app context.
    The callable gets its own app context, and with it its own db session.
    """
    result = JobResult()

    def _run():
        with app.app_context():
            try:
                result.value = target(*args, **(kwargs or {}))
            except Exception as exc:
                result.error = exc
                if on_error:
                    on_error(exc)

    result.thread = start_daemon_thread(_run)
    return result
