"""adb-backed Android driver.

Blocking adb calls run in worker threads (`asyncio.to_thread`) so a slow
device never stalls other devices' operations.
"""
