"""Interactive officer activity leaderboard."""
from __future__ import annotations

from datetime import datetime, time, timezone
from typing import Optional

import pandas as pd
import pydeck as pdk
import streamlit as st

from pcn_leaderboard import config
from pcn_leaderboard.leaderboard import (
    LeaderboardQuery,
    fetch_officer_leaderboard,
    fetch_street_leaderboard,
    officer_leaderboard_frame,
)
from pcn_leaderboard.storage import TicketDatabase


def load_database(path: Optional[str] = None) -> Optional[TicketDatabase]:
    db_path = path or config.DEFAULT_DATABASE_PATH
    db = TicketDatabase(db_path)
    if not db.path.exists():
        st.warning(
            "Ticket database not found. Run `python -m pcn_leaderboard ingest` or `ingest-file` to build it first."
        )
        return None
    db.initialize()
    return db


def main() -> None:
    st.set_page_config(page_title="Parking Officer Leaderboard", layout="wide")

    st.markdown(
        """
        <style>
        [data-testid="stSidebar"] .block-container {
            padding-top: 2rem;
        }
        .leaderboard-header {
            padding: 0.75rem 1rem;
            border-radius: 0.75rem;
            background: linear-gradient(120deg, rgba(24,74,123,0.85), rgba(9,30,66,0.95));
            color: #f5f7fb;
        }
        .leaderboard-header h1 {
            font-size: 2.4rem;
            margin-bottom: 0.2rem;
        }
        .leaderboard-header p {
            margin-bottom: 0;
            opacity: 0.85;
        }
        </style>
        """,
        unsafe_allow_html=True,
    )

    st.markdown(
        """
        <div class="leaderboard-header">
            <h1>Parking Officer Leaderboard</h1>
            <p>Penalty charge notices grouped into inferred patrol runs. Officers are labelled by rank only; no real identities are shown.</p>
        </div>
        """,
        unsafe_allow_html=True,
    )

    mapbox_token = None
    try:
        mapbox_token = st.secrets.get("mapbox_token")  # type: ignore[attr-defined]
    except Exception:
        mapbox_token = None
    mapbox_token = mapbox_token or config.get_mapbox_token()
    if mapbox_token:
        pdk.settings.mapbox_api_key = mapbox_token
        map_style = "mapbox://styles/mapbox/dark-v11"
    else:
        map_style = None
        st.info(
            "Using OpenStreetMap tiles. Add MAPBOX_API_KEY or Streamlit secret `mapbox_token` to enable Mapbox basemaps."
        )

    db = load_database()
    if db is None:
        st.stop()

    tickets = db.read_tickets_frame()
    if tickets.empty:
        st.warning("The ticket database is empty.")
        st.stop()

    issued = pd.to_datetime(tickets["issued_at"], utc=True)
    first_day, last_day = issued.min().date(), issued.max().date()
    boroughs = ["All"] + sorted(tickets["borough"].dropna().unique().tolist())

    with st.sidebar:
        st.header("Filters")
        st.caption("Refine the tickets before sequences are built.")
        borough_selected = st.selectbox("Borough", options=boroughs, index=0)
        date_range = st.date_input("Issue dates", value=(first_day, last_day), min_value=first_day, max_value=last_day)
        min_tickets = st.slider(
            "Minimum tickets per officer run", min_value=1, max_value=50, value=1, help="Hide short runs"
        )
        st.divider()
        st.caption(
            "A run continues while consecutive tickets share a borough and day and are at most "
            f"{int(config.TIME_THRESHOLD.total_seconds() // 60)} minutes and "
            f"{int(config.DISTANCE_THRESHOLD_M)} m apart."
        )

    if isinstance(date_range, tuple) and len(date_range) == 2:
        start_day, end_day = date_range
    else:
        start_day = end_day = date_range if not isinstance(date_range, tuple) else date_range[0]

    query = LeaderboardQuery(
        borough=None if borough_selected == "All" else borough_selected,
        since=datetime.combine(start_day, time.min, tzinfo=timezone.utc),
        until=datetime.combine(end_day, time.max, tzinfo=timezone.utc),
    )
    officers = officer_leaderboard_frame(
        fetch_officer_leaderboard(db, query, secret=config.get_leaderboard_secret())
    )
    officers = officers[officers["tickets"] >= min_tickets]
    streets = fetch_street_leaderboard(db, query)

    if officers.empty:
        st.warning("No officer runs match the selected filters.")
        st.stop()

    st.markdown("### Filtered Snapshot")
    metric_cols = st.columns(4)
    with metric_cols[0]:
        st.metric("Officer runs", f"{len(officers):,}")
    with metric_cols[1]:
        st.metric("Tickets in runs", f"{int(officers['tickets'].sum()):,}")
    with metric_cols[2]:
        st.metric("Longest run", f"{int(officers['tickets'].max()):,} tickets")
    with metric_cols[3]:
        st.metric("Estimated max penalties", f"£{officers['est_max_p'].sum() / 100:,.0f}")

    st.divider()

    midpoint_lat = officers["centroid_lat"].mean()
    midpoint_lon = officers["centroid_lon"].mean()

    scatter_layer = pdk.Layer(
        "ScatterplotLayer",
        data=officers,
        get_position="[centroid_lon, centroid_lat]",
        get_radius="tickets * 20",
        radius_min_pixels=4,
        get_fill_color=[255, 140, 0, 180],
        pickable=True,
    )

    layers = []
    if mapbox_token:
        layers.append(scatter_layer)
    else:
        tile_layer = pdk.Layer(
            "TileLayer",
            data="https://tile.openstreetmap.org/{z}/{x}/{y}.png",
            min_zoom=0,
            max_zoom=19,
            tile_size=256,
        )
        layers.extend([tile_layer, scatter_layer])

    deck = pdk.Deck(
        map_style=map_style,
        initial_view_state=pdk.ViewState(
            latitude=float(midpoint_lat),
            longitude=float(midpoint_lon),
            zoom=13,
            pitch=0,
        ),
        layers=layers,
        tooltip={
            "html": "<b>{label}</b><br />{borough} {day}<br />{tickets} tickets",
            "style": {"backgroundColor": "rgba(15,23,42,0.85)", "color": "white", "fontSize": "14px"},
        },
    )

    map_tab, officer_tab, street_tab = st.tabs(["Interactive Map", "Officer Leaderboard", "Street Leaderboard"])

    with map_tab:
        st.pydeck_chart(deck, use_container_width=True)
        st.caption("Each circle is the centroid of one inferred patrol run, sized by ticket count.")

    with officer_tab:
        st.dataframe(
            officers[["rank", "label", "borough", "day", "tickets", "est_min_p", "est_max_p", "first_seen", "last_seen"]]
            .rename(
                columns={
                    "rank": "Rank",
                    "label": "Officer",
                    "borough": "Borough",
                    "day": "Day",
                    "tickets": "Tickets",
                    "est_min_p": "Est. min (p)",
                    "est_max_p": "Est. max (p)",
                    "first_seen": "First seen",
                    "last_seen": "Last seen",
                }
            ),
            use_container_width=True,
            hide_index=True,
        )

    with street_tab:
        st.dataframe(
            streets.rename(
                columns={
                    "rank": "Rank",
                    "street": "Street",
                    "borough": "Borough",
                    "tickets": "Tickets",
                    "est_min_p": "Est. min (p)",
                    "est_max_p": "Est. max (p)",
                }
            ),
            use_container_width=True,
            hide_index=True,
        )

    st.divider()
    with st.expander("How this leaderboard is built"):
        st.markdown(
            """
            Tickets are ordered by borough, day and issue time, then walked once. A ticket joins the current run
            when it is close in time and space to the previous ticket; otherwise it starts a new run. Runs are
            ranked by ticket count, then by estimated maximum penalties, with a keyed hash as the final tie-break.
            Labels such as "Parking Officer 3" come from the rank alone.
            """
        )


if __name__ == "__main__":
    main()
