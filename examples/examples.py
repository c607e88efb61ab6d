"""Examples demonstrating standalone bars and managed multi-bar views"""

import sys
import time
import random
import threading

from barmux import (
    progress,
    create_single_bar,
    BarManager,
)


def example_0():
    print("=== Example 0: Several workers reporting to one manager ===")

    def worker(bar, steps):
        for step in range(1, steps + 1):
            time.sleep(random.uniform(0.01, 0.05))
            bar.increment(1, f"chunk {step}/{steps}")

    manager = BarManager(timeout=5)
    threads = []
    for name in ("download", "extract", "checksum-verify", "index"):
        steps = random.randint(40, 80)
        bar = manager.create(steps, name)
        threads.append(threading.Thread(target=worker, args=(bar, steps), daemon=True))

    for thread in threads:
        thread.start()

    unfinished = manager.show_and_wait()
    print(f"Unfinished: {unfinished}")


def example_1():
    print("=== Example 1: A failing worker and a stalled one ===")

    def failing_worker(bar):
        for step in range(1, 11):
            time.sleep(0.05)
            if step == 6:
                bar.force_stop(IOError("connection reset"))
                return
            bar.increment(1, f"record {step}")

    def overshooting_worker(bar):
        for step in range(1, 13):
            time.sleep(0.03)
            bar.increment(1, f"record {step}")

    def stalled_worker(bar):
        bar.increment(2, "waiting for lock")

    manager = BarManager(timeout=1.5)
    workers = [
        (failing_worker, manager.create(10, "failing")),
        (overshooting_worker, manager.create(10, "overshoot")),
        (stalled_worker, manager.create(10, "stalled")),
    ]

    threads = [threading.Thread(target=target, args=(bar,), daemon=True) for target, bar in workers]
    for thread in threads:
        thread.start()

    unfinished = manager.show_and_wait()
    sys.exit(1 if unfinished else 0)


def example_2():
    print("=== Example 2: Standalone bars ===")

    for _ in progress(range(30), name="Single line"):
        time.sleep(0.02)

    for _ in progress(range(30), name="Two lines", single_line=False):
        time.sleep(0.02)

    bar = create_single_bar(100, "Manual")
    while not bar.is_finished():
        time.sleep(0.01)
        bar.increment(5, f"{bar.current + 5} bytes")


if __name__ == "__main__":
    example_2()
    example_0()
    example_1()
