"""
Builds ``ColumnFamilyManager`` instances from a ``ColumnStoreConfig``.

The factory owns the driver ``Cluster`` and the callback executor. Managers
it hands out share both.
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Any

from cassandra.auth import PlainTextAuthProvider
from cassandra.cluster import EXEC_PROFILE_DEFAULT, Cluster, ExecutionProfile, NoHostAvailable
from cassandra.policies import DCAwareRoundRobinPolicy, TokenAwarePolicy
from tenacity import Retrying, before_sleep_log, retry_if_exception_type, stop_after_attempt, wait_exponential

from scylla_column.config import ColumnStoreConfig
from scylla_column.exceptions import StoreConnectionError
from scylla_column.manager import ColumnFamilyManager
from scylla_column.observability import OperationMetrics, Tracer

logger = logging.getLogger(__name__)


class ColumnFamilyManagerFactory:
    """
    Connects to the cluster and creates keyspace-bound managers.

    Example:
        with ColumnFamilyManagerFactory(load_config_from_env()) as factory:
            manager = factory.get()
            manager.save(entity)
    """

    def __init__(self, config: ColumnStoreConfig, cluster: Cluster | None = None):
        """
        Args:
            config: Validated configuration
            cluster: Pre-built cluster; built from ``config`` when omitted
        """
        self.config = config
        self.cluster = cluster or self._build_cluster(config)
        self.executor = ThreadPoolExecutor(
            max_workers=config.pool.executor_threads,
            thread_name_prefix="scylla-column-callback",
        )
        self.metrics = (
            OperationMetrics(
                service_name=f"scylla_column_{config.keyspace}",
                percentiles=config.metrics.percentiles,
            )
            if config.metrics.enabled
            else None
        )
        self.tracer = Tracer(service_name=f"scylla-column-{config.keyspace}") if config.enable_tracing else None
        self._closed = False

    @staticmethod
    def _build_cluster(config: ColumnStoreConfig) -> Cluster:
        default_profile = ExecutionProfile(
            load_balancing_policy=TokenAwarePolicy(DCAwareRoundRobinPolicy()),
            consistency_level=config.consistency_level,
            request_timeout=config.pool.request_timeout,
        )

        cluster_config: dict[str, Any] = {
            "contact_points": config.contact_points,
            "port": config.port,
            "execution_profiles": {EXEC_PROFILE_DEFAULT: default_profile},
        }
        if config.auth.enabled:
            cluster_config["auth_provider"] = PlainTextAuthProvider(
                username=config.auth.username,
                password=config.auth.password,
            )

        logger.info(
            f"Created cluster for {config.contact_points} "
            f"(default consistency {config.default_consistency})"
        )
        return Cluster(**cluster_config)

    def _connect(self) -> Any:
        retry = self.config.retry
        retrying = Retrying(
            stop=stop_after_attempt(retry.max_retries),
            wait=wait_exponential(multiplier=retry.initial_delay, max=retry.max_delay),
            retry=retry_if_exception_type(NoHostAvailable),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )
        try:
            return retrying(self.cluster.connect)
        except NoHostAvailable as e:
            raise StoreConnectionError(
                f"Failed to connect after {retry.max_retries} attempts",
                original_error=e
            ) from e

    def get(self, keyspace: str | None = None) -> ColumnFamilyManager:
        """
        Open a session and return a manager bound to ``keyspace``.

        Args:
            keyspace: Target keyspace (defaults to the configured one)
        """
        if self._closed:
            raise RuntimeError("ColumnFamilyManagerFactory is closed")

        keyspace = keyspace or self.config.keyspace
        session = self._connect()
        logger.info(f"Connected session for keyspace '{keyspace}'")
        return ColumnFamilyManager(
            session,
            self.executor,
            keyspace,
            metrics=self.metrics,
            tracer=self.tracer,
        )

    def close(self) -> None:
        """Stop the callback executor and shut the cluster down."""
        if self._closed:
            return
        self._closed = True
        self.executor.shutdown(wait=True)
        self.cluster.shutdown()
        logger.info("ColumnFamilyManagerFactory closed")

    def __enter__(self) -> "ColumnFamilyManagerFactory":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()
