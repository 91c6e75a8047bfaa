import asyncio
import logging
import resource
import sys
import time
from typing import Any

from colorama import Fore, Style

from grafana_api import GrafanaAPIClient, GrafanaAPIError, GrafanaNotConnectedError, load_config, run_with_keyboard_interrupt, setup_logging


class Const:
    CONFIG_FILE = "examples/config.yaml"
    STATS_INTERVAL = 15  # seconds


class StatsReporter:
    """
    Reports this process's stats to the Grafana API as one cluster.

    Remote eval requests from other clusters are answered with a small set of
    named values rather than arbitrary code.
    """

    # ================================
    #          INIT & RUN
    # ================================

    def __init__(self, config_path: str = Const.CONFIG_FILE) -> None:
        self.config = load_config(config_path)
        self.logger: logging.Logger = setup_logging(self.config.log_level, name="StatsReporter")
        self.client = GrafanaAPIClient.from_config(self.config, logger=self.logger)
        self.started = time.monotonic()
        self.last_cpu = (time.monotonic(), time.process_time())
        self.guild_count = 0

        self.client.on("ready", self._on_ready)
        self.client.on("disconnect", self._on_disconnect)
        self.client.on("error", self._on_error)
        self.client.on("clusterStatusUpdate", self._on_cluster_status)
        self.client.on("remoteEval", self._on_remote_eval)

    async def run(self) -> None:
        self.logger.info(f"==================== Starting cluster {self.config.cluster_id}/{self.config.cluster_count} ====================")
        async with self.client:
            while True:
                await asyncio.sleep(Const.STATS_INTERVAL)
                try:
                    await self.client.send_stats(*self.sample())
                except GrafanaNotConnectedError:
                    self.logger.debug("Skipping stats, not connected")

    # ================================
    #            STATS
    # ================================

    def sample(self) -> tuple[int, float, float, float]:
        now, cpu = time.monotonic(), time.process_time()
        last_now, last_cpu = self.last_cpu
        self.last_cpu = (now, cpu)
        cpu_usage = (cpu - last_cpu) / (now - last_now) * 100 if now > last_now else 0.0
        # ru_maxrss is KiB on Linux and bytes on macOS
        rss = resource.getrusage(resource.RUSAGE_SELF).ru_maxrss
        mem_usage = rss / 1024 / (1024 if sys.platform == "darwin" else 1)
        return self.guild_count, round(cpu_usage, 2), round(mem_usage, 2), 0.0

    # ================================
    #            EVENTS
    # ================================

    def _on_ready(self) -> None:
        print(Fore.GREEN + f"Cluster {self.config.cluster_id} identified" + Style.RESET_ALL)

    def _on_disconnect(self) -> None:
        print(Fore.YELLOW + f"Disconnected, next attempt in {self.client.wait_time:.1f}s" + Style.RESET_ALL)

    def _on_error(self, err: GrafanaAPIError) -> None:
        self.logger.error(f"Grafana API error: {err}")

    def _on_cluster_status(self, all_connected: bool) -> None:
        if all_connected:
            self.logger.info("Every cluster is connected")

    def _on_remote_eval(self, code: Any, reply) -> None:
        values = {
            "uptime": round(time.monotonic() - self.started, 1),
            "guildCount": self.guild_count,
            "clusterID": self.config.cluster_id,
        }
        if code in values:
            reply(None, values[code])
        else:
            reply(KeyError(f"unknown value {code!r}"))


# Usage
async def main():
    reporter = StatsReporter()
    await reporter.run()

if __name__ == "__main__":
    run_with_keyboard_interrupt(main)
