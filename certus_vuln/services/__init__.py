from certus_vuln.services.scan_diff import compare_scan_results, get_latest_diff, get_vulnerability_trend

__all__ = [
    "compare_scan_results",
    "get_latest_diff",
    "get_vulnerability_trend",
]
