import asyncio
import concurrent.futures
import signal


class AsyncioHelper:
    @staticmethod
    def stop_signal() -> asyncio.Event:
        """Событие остановки по SIGINT/SIGTERM"""
        loop = asyncio.get_running_loop()
        stop_event = asyncio.Event()

        loop.add_signal_handler(signal.SIGINT, stop_event.set)
        loop.add_signal_handler(signal.SIGTERM, stop_event.set)

        return stop_event

    @staticmethod
    def remove_stop_signal() -> None:
        loop = asyncio.get_running_loop()
        loop.remove_signal_handler(signal.SIGINT)
        loop.remove_signal_handler(signal.SIGTERM)

    @staticmethod
    def run_sync(coro):
        try:
            _ = asyncio.get_running_loop()
        except RuntimeError:
            # нет активного event loop
            return asyncio.run(coro)
        else:
            # есть активный event loop -> выполняем в отдельном потоке с новым loop
            with concurrent.futures.ThreadPoolExecutor() as executor:
                future = executor.submit(asyncio.run, coro)
                return future.result()
