"""Scrapers for the `ndbinfo` schema of NDB Cluster."""

from ..metrics import (
    COUNTER,
    GAUGE,
    NDBINFO,
    UNTYPED,
    DescCache,
    coalesce_number as NUMBER,
    coalesce_text as TEXT,
    new_const_metric,
    new_desc,
    sanitize_metric_name,
)
from ..registry import register_scraper
from ..scraper import Scraper


@register_scraper
class ScrapeNodes(Scraper):
    name = NDBINFO + ".nodes"
    help = "Collect metrics from ndbinfo.nodes"
    min_version = (8, 0)
    query = """
        SELECT
            node_id,
            uptime,
            status,
            start_phase,
            config_generation
        FROM ndbinfo.nodes;
    """
    columns = (
        ("node_id", TEXT),
        ("uptime", NUMBER),
        ("status", TEXT),
        ("start_phase", TEXT),
        ("config_generation", NUMBER),
    )

    def __init__(self):
        labels = ["node_id", "status", "start_phase"]
        self.uptime_desc = new_desc(
            NDBINFO, "nodes_uptime_total",
            "The time since the node was last started, in seconds by node_id/status/start_phase.",
            labels,
        )
        self.config_generation_desc = new_desc(
            NDBINFO, "nodes_config_generation",
            "The version of the cluster configuration file in use by node_id/status/start_phase.",
            labels,
        )

    def metrics_for_row(self, row):
        node_id, uptime, status, start_phase, config_generation = self.decode(row)
        return [
            new_const_metric(self.uptime_desc, GAUGE, uptime, node_id, status, start_phase),
            new_const_metric(self.config_generation_desc, GAUGE, config_generation, node_id, status, start_phase),
        ]


# Known counter names and the metric they map to. Anything else is reported
# as untyped under counters_<name>.
_KNOWN_COUNTERS = {
    "ATTRINFO": ("attrinfo_total", "The number of times an interpreted program is sent to the data node"),
    "TRANSACTIONS": ("transactions_total", "The total number of transactions initiated"),
    "COMMITS": ("commits_total", "The number of transactions that have been committed"),
    "READS": ("reads_total", "The amount of all read operations"),
    "SIMPLE_READS": ("simple_reads_total", "The amount of reads that are both the first and last operation of a transaction"),
    "WRITES": ("writes_total", "The amount of the writes"),
    "ABORTS": ("aborts_total", "The amount of transactions that have been aborted"),
    "TABLE_SCANS": ("table_scans_total", "The amount of table scan operations performed"),
    "RANGE_SCANS": ("range_scans_total", "The amount of range scan operations performed"),
    "OPERATIONS": ("operations_total", "The amount of operations processed"),
    "READS_RECEIVED": ("reads_received_total", "The amount of read requests received"),
    "LOCAL_READS_SENT": ("local_reads_sent_total", "The amount of local read requests sent"),
    "REMOTE_READS_SENT": ("remote_reads_sent_total", "The amount of remote read requests sent"),
    "READS_NOT_FOUND": ("reads_not_found_total", "The amount of read requests that did not find a matching record"),
    "TABLE_SCANS_RECEIVED": ("table_scans_received_total", "The amount of table scan requests received"),
    "LOCAL_TABLE_SCANS_SENT": ("local_table_scans_sent_total", "The amount of local table scan requests sent"),
    "RANGE_SCANS_RECEIVED": ("range_scans_received_total", "The amount of range scan requests received"),
    "LOCAL_RANGE_SCANS_SENT": ("local_range_scans_sent_total", "The amount of local range scan requests sent"),
    "REMOTE_RANGE_SCANS_SENT": ("remote_range_scans_sent_total", "The amount of remote range scan requests sent"),
    "SCAN_BATCHES_RETURNED": ("scan_batches_returned_total", "The amount of scan batches returned"),
    "SCAN_ROWS_RETURNED": ("scan_rows_returned_total", "The amount of rows returned by scan operations"),
    "PRUNED_RANGE_SCANS_RECEIVED": ("pruned_range_scans_received_total", "The amount of pruned range scan requests received"),
    "CONST_PRUNED_RANGE_SCANS_RECEIVED": (
        "const_pruned_range_scans_received_total",
        "The amount of constant pruned range scan requests received",
    ),
    "LOCAL_READS": ("local_reads_total", "The amount of reads of the primary fragment replica on the transaction coordinator's node"),
    "LOCAL_WRITES": ("local_writes_total", "The amount of primary key writes coordinated on the node holding the primary fragment replica"),
    "LQHKEY_OVERLOAD": ("lqhkey_overload_total", "The amount of primary key requests rejected at the LQH block due to transporter overload"),
    "LQHKEY_OVERLOAD_TC": ("lqhkey_overload_tc_total", "The amount of times the TC node transporter was overloaded"),
    "LQHKEY_OVERLOAD_READER": ("lqhkey_overload_reader_total", "The amount of times the API reader node was overloaded"),
    "LQHKEY_OVERLOAD_NODE_PEER": ("lqhkey_overload_node_peer_total", "The amount of times the next backup data node was overloaded"),
    "LQHKEY_OVERLOAD_SUBSCRIBER": ("lqhkey_overload_subscriber_total", "The amount of times an event subscriber was overloaded"),
    "LQHSCAN_SLOWDOWNS": (
        "lqhscan_slowdowns_total",
        "The amount of times a fragment scan batch size was reduced due to API transporter overload",
    ),
}


@register_scraper
class ScrapeCounters(Scraper):
    name = NDBINFO + ".counters"
    help = "Collect metrics from ndbinfo.counters"
    min_version = (8, 0)
    query = """
        SELECT
            node_id,
            counter_name,
            val
        FROM ndbinfo.counters;
    """
    columns = (
        ("node_id", TEXT),
        ("counter_name", TEXT),
        ("val", NUMBER),
    )

    def __init__(self):
        self.known = {
            counter: new_desc(NDBINFO, "counters_" + suffix, f"{help_text} by node_id.", ["node_id"])
            for counter, (suffix, help_text) in _KNOWN_COUNTERS.items()
        }
        self.unknown = DescCache(self._unknown_desc)

    @staticmethod
    def _unknown_desc(counter_name):
        return new_desc(
            NDBINFO, sanitize_metric_name("counters_" + counter_name.lower()),
            f"Unsupported metric from counter {counter_name} by node_id.",
            ["node_id"],
        )

    def metrics_for_row(self, row):
        node_id, counter_name, val = self.decode(row)
        desc = self.known.get(counter_name)
        if desc is not None:
            return [new_const_metric(desc, COUNTER, val, node_id)]
        return [new_const_metric(self.unknown.get(counter_name), UNTYPED, val, node_id)]


@register_scraper
class ScrapeMemoryUsage(Scraper):
    name = NDBINFO + ".memoryusage"
    help = "Collect metrics from ndbinfo.memoryusage"
    min_version = (8, 0)
    query = """
        SELECT
            node_id,
            memory_type,
            used,
            used_pages,
            total,
            total_pages
        FROM ndbinfo.memoryusage;
    """
    columns = (
        ("node_id", TEXT),
        ("memory_type", TEXT),
        ("used", NUMBER),
        ("used_pages", NUMBER),
        ("total", NUMBER),
        ("total_pages", NUMBER),
    )

    def __init__(self):
        labels = ["node_id", "memory_type"]
        self.used_desc = new_desc(
            NDBINFO, "memoryusage_used_bytes",
            "The amount of bytes currently used for data memory or index memory by node_id/memory_type.",
            labels,
        )
        self.used_pages_desc = new_desc(
            NDBINFO, "memoryusage_used_pages",
            "The amount of pages currently used for data memory or index memory by node_id/memory_type.",
            labels,
        )
        self.total_desc = new_desc(
            NDBINFO, "memoryusage_available_bytes",
            "Total number of bytes of data memory or index memory available by node_id/memory_type.",
            labels,
        )
        self.total_pages_desc = new_desc(
            NDBINFO, "memoryusage_available_pages",
            "The amount of memory pages available for data memory or index memory by node_id/memory_type.",
            labels,
        )

    def metrics_for_row(self, row):
        node_id, memory_type, used, used_pages, total, total_pages = self.decode(row)
        return [
            new_const_metric(self.used_desc, GAUGE, used, node_id, memory_type),
            new_const_metric(self.used_pages_desc, GAUGE, used_pages, node_id, memory_type),
            new_const_metric(self.total_desc, GAUGE, total, node_id, memory_type),
            new_const_metric(self.total_pages_desc, GAUGE, total_pages, node_id, memory_type),
        ]


@register_scraper
class ScrapeResources(Scraper):
    name = NDBINFO + ".resources"
    help = "Collect metrics from ndbinfo.resources"
    min_version = (8, 0)
    query = """
        SELECT
            node_id,
            resource_name,
            reserved,
            used,
            max,
            spare
        FROM ndbinfo.resources;
    """
    columns = (
        ("node_id", TEXT),
        ("resource_name", TEXT),
        ("reserved", NUMBER),
        ("used", NUMBER),
        ("max", NUMBER),
        ("spare", NUMBER),
    )

    def __init__(self):
        self.pages_desc = new_desc(
            NDBINFO, "resources",
            "The amount, as a number of 32KB pages by node_id/resource_name/type.",
            ["node_id", "resource_name", "type"],
        )

    def metrics_for_row(self, row):
        node_id, resource_name, reserved, used, pages_max, spare = self.decode(row)
        return [
            new_const_metric(self.pages_desc, GAUGE, value, node_id, resource_name, kind)
            for kind, value in (("reserved", reserved), ("used", used), ("max", pages_max), ("spare", spare))
        ]


class _LogUsageScraper(Scraper):
    """Shared shape of ndbinfo.logspaces and ndbinfo.logbuffers."""

    table = None
    columns = (
        ("node_id", TEXT),
        ("log_type", TEXT),
        ("log_id", TEXT),
        ("log_part", TEXT),
        ("total", NUMBER),
        ("used", NUMBER),
    )

    def __init__(self):
        labels = ["node_id", "log_type", "log_id", "log_part"]
        self.total_desc = new_desc(
            NDBINFO, f"{self.table}_bytes_available",
            "The amount of total space available for this log in bytes by node_id/log_type/log_id/log_part.",
            labels,
        )
        self.used_desc = new_desc(
            NDBINFO, f"{self.table}_bytes_used",
            "The amount of space used by this log in bytes by node_id/log_type/log_id/log_part.",
            labels,
        )

    def metrics_for_row(self, row):
        node_id, log_type, log_id, log_part, total, used = self.decode(row)
        return [
            new_const_metric(self.total_desc, GAUGE, total, node_id, log_type, log_id, log_part),
            new_const_metric(self.used_desc, GAUGE, used, node_id, log_type, log_id, log_part),
        ]


@register_scraper
class ScrapeLogSpaces(_LogUsageScraper):
    name = NDBINFO + ".logspaces"
    help = "Collect metrics from ndbinfo.logspaces"
    min_version = (8, 0)
    table = "logspaces"
    query = """
        SELECT
            node_id,
            log_type,
            log_id,
            log_part,
            total,
            used
        FROM ndbinfo.logspaces;
    """


@register_scraper
class ScrapeLogBuffers(_LogUsageScraper):
    name = NDBINFO + ".logbuffers"
    help = "Collect metrics from ndbinfo.logbuffers"
    min_version = (8, 0)
    table = "logbuffers"
    query = """
        SELECT
            node_id,
            log_type,
            log_id,
            log_part,
            total,
            used
        FROM ndbinfo.logbuffers;
    """


@register_scraper
class ScrapeCPUInfo(Scraper):
    name = NDBINFO + ".cpuinfo"
    help = "Collect metrics from ndbinfo.cpuinfo"
    min_version = (8, 0)
    query = """
        SELECT
            node_id,
            cpu_no,
            cpu_online,
            core_id,
            socket_id
        FROM ndbinfo.cpuinfo;
    """
    columns = (
        ("node_id", TEXT),
        ("cpu_no", TEXT),
        ("cpu_online", NUMBER),
        ("core_id", TEXT),
        ("socket_id", TEXT),
    )

    def __init__(self):
        self.online_desc = new_desc(
            NDBINFO, "cpuinfo_cpu_online",
            "The status of CPU by node_id/cpu_no/core_id/socket_id. 1 if the CPU is online, otherwise 0.",
            ["node_id", "cpu_no", "core_id", "socket_id"],
        )

    def metrics_for_row(self, row):
        node_id, cpu_no, cpu_online, core_id, socket_id = self.decode(row)
        return [new_const_metric(self.online_desc, GAUGE, cpu_online, node_id, cpu_no, core_id, socket_id)]


@register_scraper
class ScrapeCPUStat(Scraper):
    name = NDBINFO + ".cpustat"
    help = "Collect metrics from ndbinfo.cpustat"
    min_version = (8, 0)
    query = """
        SELECT
            node_id,
            thr_no,
            OS_user,
            OS_system,
            OS_idle,
            thread_exec,
            thread_sleeping,
            thread_spinning,
            thread_send,
            thread_buffer_full,
            elapsed_time
        FROM ndbinfo.cpustat;
    """
    modes = (
        "os_user", "os_system", "os_idle",
        "thread_exec", "thread_sleeping", "thread_spinning",
        "thread_send", "thread_buffer_full",
    )
    columns = (("node_id", TEXT), ("thr_no", TEXT)) + tuple((mode, NUMBER) for mode in modes) + (("elapsed_time", NUMBER),)

    def __init__(self):
        self.mode_desc = new_desc(
            NDBINFO, "cpustat",
            "The percentage of last second spent in each mode by node_id/thr_no/mode.",
            ["node_id", "thr_no", "mode"],
        )
        self.elapsed_desc = new_desc(
            NDBINFO, "cpustat_elapsed_time",
            "The total time over which the CPU statistics were collected by node_id/thr_no.",
            ["node_id", "thr_no"],
        )

    def metrics_for_row(self, row):
        node_id, thr_no, *values = self.decode(row)
        elapsed_time = values.pop()
        metrics = [
            new_const_metric(self.mode_desc, GAUGE, value, node_id, thr_no, mode)
            for mode, value in zip(self.modes, values)
        ]
        metrics.append(new_const_metric(self.elapsed_desc, GAUGE, elapsed_time, node_id, thr_no))
        return metrics


@register_scraper
class ScrapeRestartInfo(Scraper):
    name = NDBINFO + ".restart_info"
    help = "Collect metrics from ndbinfo.restart_info"
    min_version = (8, 0)
    # (column, action label)
    phases = (
        ("secs_to_complete_node_failure", "complete_node_failure"),
        ("secs_to_allocate_node_id", "allocate_node_id"),
        ("secs_to_include_in_heartbeat_protocol", "include_in_heartbeat_protocol"),
        ("secs_until_wait_for_ndbcntr_master", "until_wait_for_ndbcntr_master"),
        ("secs_wait_for_ndbcntr_master", "wait_for_ndbcntr_master"),
        ("secs_to_get_start_permitted", "get_start_permitted"),
        ("secs_to_wait_for_lcp_for_copy_meta_data", "wait_for_lcp_for_copy_meta_data"),
        ("secs_to_copy_meta_data", "copy_meta_data"),
        ("secs_to_include_node", "include_node"),
        ("secs_starting_node_to_request_local_recovery", "starting_node_to_request_local_recovery"),
        ("secs_for_local_recovery", "local_recovery"),
        ("secs_restore_fragments", "restore_fragments"),
        ("secs_undo_disk_data", "undo_disk_data"),
        ("secs_exec_redo_log", "exec_redo_log"),
        ("secs_index_rebuild", "index_rebuild"),
        ("secs_to_synchronize_starting_node", "synchronize_starting_node"),
        ("secs_wait_lcp_for_restart", "wait_lcp_for_restart"),
        ("secs_wait_subscription_handover", "wait_subscription_handover"),
        ("total_restart_secs", "total"),
    )
    query = (
        "SELECT node_id, node_restart_status_int, "
        + ", ".join(column for column, _ in phases)
        + " FROM ndbinfo.restart_info;"
    )
    columns = (("node_id", TEXT), ("node_restart_status_int", NUMBER)) + tuple((column, NUMBER) for column, _ in phases)

    def __init__(self):
        self.status_desc = new_desc(
            NDBINFO, "restart_info_node_restart_status_int",
            "The node restart status code by node_id. See manual for human readable value.",
            ["node_id"],
        )
        self.secs_desc = new_desc(
            NDBINFO, "restart_info_secs",
            "Time in seconds to complete action by node_id/action.",
            ["node_id", "action"],
        )

    def metrics_for_row(self, row):
        node_id, status, *secs = self.decode(row)
        metrics = [new_const_metric(self.status_desc, GAUGE, status, node_id)]
        for (_, action), value in zip(self.phases, secs):
            metrics.append(new_const_metric(self.secs_desc, GAUGE, value, node_id, action))
        return metrics


@register_scraper
class ScrapeBackupID(Scraper):
    name = NDBINFO + ".backup_id"
    help = "Collect metrics from ndbinfo.backup_id"
    min_version = (8, 0)
    query = """
        SELECT
            id
        FROM ndbinfo.backup_id;
    """
    columns = (("id", NUMBER),)

    def __init__(self):
        self.id_desc = new_desc(NDBINFO, "backup_id", "The ID of the backup started most recently for this cluster.")

    def metrics_for_row(self, row):
        (backup_id,) = self.decode(row)
        return [new_const_metric(self.id_desc, GAUGE, backup_id)]


@register_scraper
class ScrapeArbitratorValiditySummary(Scraper):
    name = NDBINFO + ".arbitrator_validity_summary"
    help = "Collect metrics from ndbinfo.arbitrator_validity_summary"
    min_version = (8, 0)
    query = """
        SELECT
            arbitrator,
            arb_ticket,
            arb_connected,
            consensus_count
        FROM ndbinfo.arbitrator_validity_summary;
    """
    columns = (
        ("arbitrator", TEXT),
        ("arb_ticket", TEXT),
        ("arb_connected", TEXT),
        ("consensus_count", NUMBER),
    )

    def __init__(self):
        self.consensus_desc = new_desc(
            NDBINFO, "arbitrator_validity_summary_consensus_count",
            "The number of data nodes that see this node as arbitrator by arbitrator/arb_ticket/arb_connected.",
            ["arbitrator", "arb_ticket", "arb_connected"],
        )

    def metrics_for_row(self, row):
        arbitrator, arb_ticket, arb_connected, consensus_count = self.decode(row)
        return [new_const_metric(self.consensus_desc, GAUGE, consensus_count, arbitrator, arb_ticket, arb_connected)]


@register_scraper
class ScrapeTransporters(Scraper):
    name = NDBINFO + ".transporters"
    help = "Collect metrics from ndbinfo.transporters"
    min_version = (8, 0)
    query = """
        SELECT
            node_id,
            remote_node_id,
            status,
            remote_address,
            bytes_sent,
            bytes_received,
            connect_count,
            overloaded,
            overload_count,
            slowdown,
            slowdown_count
        FROM ndbinfo.transporters;
    """
    columns = (
        ("node_id", TEXT),
        ("remote_node_id", TEXT),
        ("status", TEXT),
        ("remote_address", TEXT),
        ("bytes_sent", NUMBER),
        ("bytes_received", NUMBER),
        ("connect_count", NUMBER),
        ("overloaded", NUMBER),
        ("overload_count", NUMBER),
        ("slowdown", NUMBER),
        ("slowdown_count", NUMBER),
    )

    def __init__(self):
        labels = ["node_id", "remote_node_id", "status", "remote_address"]
        self.bytes_desc = new_desc(
            NDBINFO, "transporters_bytes_total",
            "The total amount of bytes sent/received using this connection by "
            "node_id/remote_node_id/status/remote_address/action.",
            labels + ["action"],
        )
        self.state_desc = new_desc(
            NDBINFO, "transporters_state",
            "Whether transporter has state (1) or not (0) by node_id/remote_node_id/status/remote_address/state.",
            labels + ["state"],
        )
        self.count_desc = new_desc(
            NDBINFO, "transporters_count_total",
            "The total amount of times action has happened on this transporter by "
            "node_id/remote_node_id/status/remote_address/action.",
            labels + ["action"],
        )

    def metrics_for_row(self, row):
        (node_id, remote_node_id, status, remote_address,
         bytes_sent, bytes_received, connect_count,
         overloaded, overload_count, slowdown, slowdown_count) = self.decode(row)
        labels = (node_id, remote_node_id, status, remote_address)
        return [
            new_const_metric(self.bytes_desc, COUNTER, bytes_sent, *labels, "sent"),
            new_const_metric(self.bytes_desc, COUNTER, bytes_received, *labels, "received"),
            new_const_metric(self.count_desc, COUNTER, connect_count, *labels, "connect"),
            new_const_metric(self.state_desc, GAUGE, overloaded, *labels, "overload"),
            new_const_metric(self.count_desc, COUNTER, overload_count, *labels, "overload"),
            new_const_metric(self.state_desc, GAUGE, slowdown, *labels, "slowdown"),
            new_const_metric(self.count_desc, COUNTER, slowdown_count, *labels, "slowdown"),
        ]


@register_scraper
class ScrapeTransporterDetails(Scraper):
    name = NDBINFO + ".transporter_details"
    help = "Collect metrics from ndbinfo.transporter_details"
    min_version = (8, 4)
    query = """
        SELECT
            node_id,
            trp_id,
            remote_node_id,
            status,
            remote_address,
            bytes_sent,
            bytes_received,
            connect_count,
            overloaded,
            overload_count,
            slowdown,
            slowdown_count,
            encrypted,
            sendbuffer_used_bytes,
            sendbuffer_max_used_bytes,
            sendbuffer_alloc_bytes,
            sendbuffer_max_alloc_bytes,
            type
        FROM ndbinfo.transporter_details;
    """
    columns = (
        ("node_id", TEXT),
        ("trp_id", TEXT),
        ("remote_node_id", TEXT),
        ("status", TEXT),
        ("remote_address", TEXT),
        ("bytes_sent", NUMBER),
        ("bytes_received", NUMBER),
        ("connect_count", NUMBER),
        ("overloaded", NUMBER),
        ("overload_count", NUMBER),
        ("slowdown", NUMBER),
        ("slowdown_count", NUMBER),
        ("encrypted", NUMBER),
        ("sendbuffer_used_bytes", NUMBER),
        ("sendbuffer_max_used_bytes", NUMBER),
        ("sendbuffer_alloc_bytes", NUMBER),
        ("sendbuffer_max_alloc_bytes", NUMBER),
        ("type", TEXT),
    )

    def __init__(self):
        labels = ["node_id", "trp_id", "remote_node_id", "status", "remote_address", "type"]
        by = "/".join(labels)
        self.bytes_desc = new_desc(
            NDBINFO, "transporter_details_bytes_total",
            f"The total amount of bytes sent/received using this connection by {by}/action.",
            labels + ["action"],
        )
        self.count_desc = new_desc(
            NDBINFO, "transporter_details_count_total",
            f"The total amount of times action has happened on this transporter by {by}/action.",
            labels + ["action"],
        )
        self.state_desc = new_desc(
            NDBINFO, "transporter_details_state",
            f"Whether transporter has state (1) or not (0) by {by}/state.",
            labels + ["state"],
        )
        self.sendbuffer_desc = new_desc(
            NDBINFO, "transporter_details_sendbuffer_bytes",
            f"The amount of send buffer bytes for the action by this transporter by {by}/action.",
            labels + ["action"],
        )

    def metrics_for_row(self, row):
        (node_id, trp_id, remote_node_id, status, remote_address,
         bytes_sent, bytes_received, connect_count,
         overloaded, overload_count, slowdown, slowdown_count, encrypted,
         used, max_used, alloc, max_alloc, connection_type) = self.decode(row)
        labels = (node_id, trp_id, remote_node_id, status, remote_address, connection_type)
        return [
            new_const_metric(self.bytes_desc, COUNTER, bytes_sent, *labels, "sent"),
            new_const_metric(self.bytes_desc, COUNTER, bytes_received, *labels, "received"),
            new_const_metric(self.count_desc, COUNTER, connect_count, *labels, "connect"),
            new_const_metric(self.state_desc, GAUGE, overloaded, *labels, "overload"),
            new_const_metric(self.count_desc, COUNTER, overload_count, *labels, "overload"),
            new_const_metric(self.state_desc, GAUGE, slowdown, *labels, "slowdown"),
            new_const_metric(self.count_desc, COUNTER, slowdown_count, *labels, "slowdown"),
            new_const_metric(self.state_desc, GAUGE, encrypted, *labels, "encrypted"),
            new_const_metric(self.sendbuffer_desc, GAUGE, used, *labels, "used"),
            new_const_metric(self.sendbuffer_desc, GAUGE, max_used, *labels, "max_used"),
            new_const_metric(self.sendbuffer_desc, GAUGE, alloc, *labels, "alloc"),
            new_const_metric(self.sendbuffer_desc, GAUGE, max_alloc, *labels, "max_alloc"),
        ]


@register_scraper
class ScrapeDiskPageBuffer(Scraper):
    name = NDBINFO + ".diskpagebuffer"
    help = "Collect metrics from ndbinfo.diskpagebuffer"
    min_version = (8, 0)
    query = """
        SELECT
            node_id,
            block_instance,
            pages_written,
            pages_written_lcp,
            pages_read,
            log_waits,
            page_requests_direct_return,
            page_requests_wait_queue,
            page_requests_wait_io
        FROM ndbinfo.diskpagebuffer;
    """
    fields = (
        ("pages_written", "The amount of pages written to disk"),
        ("pages_written_lcp", "The amount of pages written by local checkpoints"),
        ("pages_read", "The amount of pages read from disk"),
        ("log_waits", "The amount of page writes waiting for log to be written to disk"),
        ("page_requests_direct_return", "The amount of requests for pages that were available in buffer"),
        ("page_requests_wait_queue", "The amount of requests that had to wait for pages to become available in buffer"),
        ("page_requests_wait_io", "The amount of requests that had to be read from pages on disk"),
    )
    columns = (("node_id", TEXT), ("block_instance", TEXT)) + tuple((field, NUMBER) for field, _ in fields)

    def __init__(self):
        self.descs = [
            new_desc(NDBINFO, "diskpagebuffer_" + field, f"{help_text} by node_id/block_instance.",
                     ["node_id", "block_instance"])
            for field, help_text in self.fields
        ]

    def metrics_for_row(self, row):
        node_id, block_instance, *values = self.decode(row)
        return [
            new_const_metric(desc, GAUGE, value, node_id, block_instance)
            for desc, value in zip(self.descs, values)
        ]


@register_scraper
class ScrapeTCTimeTrackStats(Scraper):
    name = NDBINFO + ".tc_time_track_stats"
    help = "Collect metrics from ndbinfo.tc_time_track_stats"
    min_version = (8, 0)
    query = """
        SELECT
            node_id,
            comm_node_id,
            upper_bound,
            scans,
            scan_errors,
            scan_fragments,
            scan_fragment_errors,
            transactions,
            transaction_errors,
            read_key_ops,
            write_key_ops,
            index_key_ops,
            key_op_errors
        FROM ndbinfo.tc_time_track_stats;
    """
    actions = (
        "scans", "scan_errors", "scan_fragments", "scan_fragment_errors",
        "transactions", "transaction_errors",
        "read_key_ops", "write_key_ops", "index_key_ops", "key_op_errors",
    )
    columns = (("node_id", TEXT), ("comm_node_id", TEXT), ("upper_bound", TEXT)) + tuple(
        (action, NUMBER) for action in actions
    )

    def __init__(self):
        self.count_desc = new_desc(
            NDBINFO, "tc_time_track_stats_count_total",
            "The amount of actions by node_id/comm_node_id/upper_bound/action. "
            "upper_bound is the latency bucket in microseconds.",
            ["node_id", "comm_node_id", "upper_bound", "action"],
        )

    def metrics_for_row(self, row):
        node_id, comm_node_id, upper_bound, *values = self.decode(row)
        return [
            new_const_metric(self.count_desc, COUNTER, value, node_id, comm_node_id, upper_bound, action)
            for action, value in zip(self.actions, values)
        ]
