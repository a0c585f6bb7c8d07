import threading

from contrastflux.utils.utils import _indented, log_indent


def test_log_indent_nests():
    with log_indent():
        with log_indent():
            assert _indented("step") == "    step"
        assert _indented("step") == "  step"
    assert _indented("step") == "step"


def test_log_indent_is_per_thread():
    entered, release = threading.Event(), threading.Event()
    seen = {}

    def worker():
        with log_indent():
            seen["worker"] = _indented("step")
            entered.set()
            release.wait(5)

    t = threading.Thread(target=worker)
    t.start()
    entered.wait(5)
    seen["main"] = _indented("step")
    release.set()
    t.join()

    assert seen == {"worker": "  step", "main": "step"}
