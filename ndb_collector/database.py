import logging
import queue
import threading
import time
import traceback
from contextlib import contextmanager
from queue import Queue
from threading import Semaphore

import pymysql

from .errors import HandleUnavailable, QueryError

# Server error codes for a statement stopped by KILL QUERY / max_execution_time.
_INTERRUPTED_CODES = {1317, 3024}


class PooledConnection:
    def __init__(self, conn):
        self.conn = conn
        self.created_at = time.time()

    def is_expired(self, max_lifetime):
        return max_lifetime > 0 and (time.time() - self.created_at) > max_lifetime

    def close(self):
        try:
            self.conn.close()
        except pymysql.err.Error as e:
            logging.debug(f"Error closing connection: {e}")


def build_connect_args(conn_config):
    args = {
        "host": conn_config.get("host", "localhost"),
        "port": int(conn_config.get("port", 3306)),
        "user": conn_config["user"],
        "password": conn_config.get("password") or "",
        "autocommit": True,
        "charset": conn_config.get("charset", "utf8mb4"),
    }
    # Include optional parameters if present
    for key in ["connect_timeout", "read_timeout", "unix_socket", "database"]:
        if key in conn_config:
            args[key] = conn_config[key]
    if conn_config.get("ssl"):
        args["ssl"] = conn_config["ssl"]
    args_log = dict(args)
    args_log["password"] = "***"
    logging.debug(f"Building connect args from connection config: {args_log}")
    return args


def connect_with_retries(conn_config):
    retries = max(1, conn_config.get("connection_retries", 1))
    delay = conn_config.get("retry_delay", 1)
    args = build_connect_args(conn_config)
    target = f"{args['user']}@{args['host']}:{args['port']}"
    last_exc = None
    for attempt in range(1, retries + 1):
        start_time = time.time()
        try:
            logging.debug(f"Connection attempt {attempt} to {target}")
            conn = pymysql.connect(**args)
            elapsed = time.time() - start_time
            logging.info(f"Connection attempt {attempt} to {target} succeeded in {elapsed:.2f} seconds.")
            return conn
        except pymysql.err.Error as exc:
            last_exc = exc
            elapsed = time.time() - start_time
            logging.warning(f"Connection attempt {attempt} to {target} failed after {elapsed:.2f} seconds: {exc}")
            if attempt < retries:
                time.sleep(delay)
    logging.error(f"All connection attempts to {target} failed. Last error: {last_exc}")
    raise HandleUnavailable(f"cannot connect to {target}: {last_exc}") from last_exc


def is_connection_alive(conn):
    """
    Checks if the connection is alive by running a lightweight query.
    Returns True if alive, False otherwise.
    """
    try:
        with conn.cursor() as cursor:
            cursor.execute("SELECT 1")
            cursor.fetchall()
        return True
    except pymysql.err.Error as e:
        logging.warning(f"Connection health check failed: {e}")
        return False


class Database:
    """
    Shared database handle for one data source.

    Holds a bounded pool of PyMySQL connections; at most `max_connections`
    are in use at once, and up to `max_idle` are kept between scrapes.
    Safe to use from several scraper threads at the same time.
    """

    def __init__(self, name, conn_config, max_idle=None, max_lifetime=0):
        self.name = name
        self.conn_config = conn_config
        self.pool_size = max(1, conn_config.get("max_connections", 1))
        self.max_idle = self.pool_size if max_idle is None else max(0, max_idle)
        self.max_lifetime = max_lifetime
        self._idle = Queue(maxsize=self.pool_size)
        self._slots = Semaphore(self.pool_size)
        self._closed = False

    def _acquire_slot(self, ctx):
        while not self._slots.acquire(timeout=0.1):
            ctx.check()

    def _connect(self):
        return PooledConnection(connect_with_retries(self.conn_config))

    def acquire(self, ctx):
        """Take a live connection from the pool or open a new one."""
        if self._closed:
            raise HandleUnavailable(f"database handle '{self.name}' is closed")
        ctx.check()
        self._acquire_slot(ctx)
        try:
            while True:
                try:
                    candidate = self._idle.get_nowait()
                except queue.Empty:
                    return self._connect()
                expired = candidate.is_expired(self.max_lifetime)
                if expired or not is_connection_alive(candidate.conn):
                    logging.info(f"Discarding pooled connection (expired={expired})")
                    candidate.close()
                    continue
                return candidate
        except BaseException:
            self._slots.release()
            raise

    def release(self, wrapper, discard=False):
        try:
            if discard or self._closed or self._idle.qsize() >= self.max_idle:
                wrapper.close()
                return
            try:
                self._idle.put_nowait(wrapper)
            except queue.Full:
                wrapper.close()
        finally:
            self._slots.release()

    def prepopulate(self):
        """Open idle connections up front. Failures are logged, not raised."""
        for _ in range(self.max_idle):
            try:
                self._idle.put_nowait(self._connect())
                logging.info(f"Pre-populated connection for data source '{self.name}'")
            except HandleUnavailable as e:
                logging.error(f"Failed to pre-populate connection for '{self.name}': {e}")
                break
            except queue.Full:
                break

    def _kill_query(self, thread_id):
        def kill():
            side_config = dict(self.conn_config, connection_retries=1)
            try:
                conn = connect_with_retries(side_config)
            except HandleUnavailable as e:
                logging.warning(f"Cannot kill query on connection {thread_id}: {e}")
                return
            try:
                with conn.cursor() as cursor:
                    cursor.execute(f"KILL QUERY {int(thread_id)}")
                logging.info(f"Killed query on connection {thread_id}")
            except pymysql.err.Error as e:
                logging.warning(f"KILL QUERY {thread_id} failed: {e}")
            finally:
                conn.close()

        threading.Thread(target=kill, name=f"kill-query-{thread_id}", daemon=True).start()

    @contextmanager
    def query(self, ctx, sql):
        """
        Run sql and yield an iterator over its rows (tuples).

        The cursor is closed and the connection handed back on every exit
        path. Cancelling ctx kills the statement on the server; the iterator
        raises the context's cancellation error.
        """
        wrapper = self.acquire(ctx)
        discard = False
        cursor = None
        # A connection with a KILL QUERY in flight must never go back to the pool.
        kill_lock = threading.Lock()
        kill_state = {"finished": False, "killed": False}

        def kill():
            with kill_lock:
                if kill_state["finished"]:
                    return
                kill_state["killed"] = True
            self._kill_query(wrapper.conn.thread_id())

        unregister = ctx.on_cancel(kill)
        try:
            cursor = wrapper.conn.cursor()
            try:
                cursor.execute(sql)
            except pymysql.err.Error as e:
                discard = isinstance(e, (pymysql.err.OperationalError, pymysql.err.InterfaceError))
                if ctx.done() or (e.args and e.args[0] in _INTERRUPTED_CODES):
                    discard = True
                    ctx.check()
                logging.debug(f"Query failed: {e}\n{traceback.format_exc()}")
                raise QueryError(sql, e) from e
            yield _iter_rows(ctx, cursor)
        except BaseException:
            discard = discard or ctx.done()
            raise
        finally:
            unregister()
            with kill_lock:
                kill_state["finished"] = True
                discard = discard or kill_state["killed"]
            if cursor is not None:
                try:
                    cursor.close()
                except pymysql.err.Error as e:
                    logging.debug(f"Error closing cursor: {e}")
                    discard = True
            self.release(wrapper, discard=discard)

    def engine_version(self, ctx):
        with self.query(ctx, "SELECT @@version") as rows:
            for row in rows:
                return row[0]
        return None

    def close(self):
        self._closed = True
        closed = 0
        while True:
            try:
                wrapper = self._idle.get_nowait()
            except queue.Empty:
                break
            wrapper.close()
            closed += 1
        logging.info(f"Closed {closed} idle connection(s) for data source '{self.name}'")


def _iter_rows(ctx, cursor):
    for row in cursor:
        ctx.check()
        yield row
