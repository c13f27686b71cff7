import os

import psutil


def open_handle_count() -> int:
    """
    Number of descriptors (POSIX) or handles (Windows) held by this process.

    Comparing the count before and after a redirection shows whether a
    failure path leaked its backup descriptor.
    """
    process = psutil.Process(os.getpid())
    if hasattr(process, "num_fds"):
        return process.num_fds()
    return process.num_handles()
