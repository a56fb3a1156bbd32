"""Optional K-search progress figures."""

from scnorm.plotting.progress import plot_k_iteration, write_progress_plots

__all__ = ["plot_k_iteration", "write_progress_plots"]
