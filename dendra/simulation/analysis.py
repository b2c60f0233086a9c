"""Post-hoc analysis of a snapshot stream.

Functions turning collected Snapshot objects into pandas tables: voltage
traces, spike tables and per-compartment firing rates.
"""

import numpy as np
import pandas as pd


def voltage_traces(snapshots, compartment_ids=None, millivolts=True):
    """Voltage traces as a wide DataFrame.

    Parameters
    ----------
    snapshots : iterable of Snapshot
    compartment_ids : list, optional
        Columns to keep. All compartments if None.
    millivolts : bool
        Report mV instead of the stream's volts.

    Returns
    -------
    pd.DataFrame
        Indexed by sim_time (ms), one column per compartment, plus a
        tick_index column.
    """
    snapshots = list(snapshots)
    if not snapshots:
        return pd.DataFrame(columns=["tick_index"]).rename_axis("sim_time")

    scale = 1.0e3 if millivolts else 1.0
    rows = []
    for snap in snapshots:
        volts = snap.compartment_voltages
        keys = compartment_ids if compartment_ids is not None else list(volts)
        row = {cid: volts[cid] * scale for cid in keys}
        row["tick_index"] = snap.tick_index
        row["sim_time"] = snap.sim_time
        rows.append(row)

    return pd.DataFrame(rows).set_index("sim_time")


def spike_table(snapshots):
    """All spikes carried by a snapshot stream.

    Returns
    -------
    pd.DataFrame
        Columns: compartment_id, time (ms), sorted by time.
    """
    records = [{"compartment_id": cid, "time": t}
               for snap in snapshots for cid, t in snap.spikes]
    df = pd.DataFrame(records, columns=["compartment_id", "time"])
    return df.sort_values("time", kind="stable").reset_index(drop=True)


def firing_rates(spikes, duration, compartment_ids=None):
    """Spike count per compartment divided by duration.

    Parameters
    ----------
    spikes : pd.DataFrame
        As returned by spike_table().
    duration : float
        Observation window (ms).
    compartment_ids : list, optional
        Compartments to report, including silent ones.

    Returns
    -------
    pd.Series
        Firing rate (Hz) by compartment id.
    """
    counts = spikes.groupby("compartment_id").size()
    if compartment_ids is not None:
        counts = counts.reindex(compartment_ids, fill_value=0)
    return counts / (duration / 1000.0)


def interspike_intervals(spikes, compartment_id):
    """Intervals between consecutive spikes of one compartment (ms)."""
    times = np.sort(spikes.loc[spikes["compartment_id"] == compartment_id, "time"].values)
    return np.diff(times)
