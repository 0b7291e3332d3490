"""
Streamlit UI for the service quote builder.

Features:
- Tabbed interface for Quote, Catalog, Blueprint, and System Info
- Editable line grid (select, quantity, maintenance, override price)
- Workbook upload with automatic blueprint analysis
- Export of the filled-in workbook to Excel/CSV
"""
import streamlit as st
import pandas as pd
import sys
from pathlib import Path
from datetime import datetime

# Add src to path for imports
src_path = Path(__file__).parent.parent.parent
if str(src_path) not in sys.path:
    sys.path.insert(0, str(src_path))

from service_pricing import __version__
from service_pricing.api.state import build_service
from service_pricing.config.logging import configure_logging
from service_pricing.errors import PricingError


st.set_page_config(
    page_title="Service Pricing",
    layout="wide",
    initial_sidebar_state="expanded"
)


@st.cache_resource
def get_service():
    """Get cached service instance."""
    configure_logging()
    return build_service()


try:
    service = get_service()
    boot = service.bootstrap()
except PricingError as e:
    st.error(f"System Error: {e}")
    st.stop()

metadata = boot.metadata

# ============================================================================
# SIDEBAR: Quote Context
# ============================================================================
with st.sidebar:
    st.header("📄 Workbook")

    with st.container(border=True):
        if boot.workbook_info:
            st.markdown(f"**{boot.workbook_info['filename']}**")
            st.caption(f"Uploaded {(boot.workbook_info.get('uploadedAt') or '')[:19]}")
            st.caption(f"Blueprint: {boot.workbook_info.get('blueprintModel') or 'none'}")
            if boot.workbook_info.get("blueprintError"):
                st.warning(boot.workbook_info["blueprintError"])
        else:
            st.info("No workbook uploaded")

        uploaded = st.file_uploader("Upload pricing workbook", type=["xlsx", "xlsm"])
        if uploaded is not None and st.button("⬆️ Store & Analyze", use_container_width=True):
            with st.spinner("Analyzing workbook..."):
                try:
                    outcome = service.upload_workbook(uploaded.getvalue(), filename=uploaded.name,
                                                      mime_type=uploaded.type)
                    if outcome.error:
                        st.warning(outcome.error)
                    st.rerun()
                except PricingError as e:
                    st.error(str(e))

    st.divider()

    if metadata:
        st.header("👤 Client Context")
        segment = st.selectbox(
            "Client Size",
            metadata.client_segments,
            index=metadata.client_segments.index(boot.defaults.segment) if boot.defaults else 0,
        )
        price_tier = st.selectbox(
            "Price Point",
            metadata.price_tiers,
            index=metadata.price_tiers.index(boot.defaults.price_tier) if boot.defaults else 0,
        )

        with st.expander("📝 Quote Details"):
            quote_details = {
                "clientName": st.text_input("Client Name"),
                "companyName": st.text_input("Company"),
                "preparedBy": st.text_input("Prepared By"),
                "preparedForEmail": st.text_input("Client Email"),
                "notes": st.text_area("Notes", height=80),
            }


# ============================================================================
# MAIN CONTENT: TABBED INTERFACE
# ============================================================================
st.title("Service Pricing")
st.caption(f"v{__version__} | {metadata.mode if metadata else 'setup'} mode | {datetime.now().strftime('%Y-%m-%d')}")

if boot.setup_required or metadata is None:
    st.info(boot.message or "Upload a pricing workbook to enable the calculator.")
    st.stop()

tab1, tab2, tab3, tab4 = st.tabs(["⚡ Quote Builder", "📚 Catalog", "🧩 Blueprint", "📊 System"])


# ============================================================================
# TAB 1: QUOTE BUILDER
# ============================================================================
with tab1:
    grid = pd.DataFrame([{
        'lineId': line.id,
        'Select': line.default_selected,
        'Tier': line.tier,
        'Service': line.service,
        'Billing': line.billing,
        'Qty': float(line.default_quantity or 0),
        'Maintenance': line.default_maintenance,
        'Override Price': None,
    } for line in metadata.line_items])

    edited_df = st.data_editor(
        grid,
        use_container_width=True,
        column_config={
            "lineId": None,
            "Select": st.column_config.CheckboxColumn("Select"),
            "Tier": st.column_config.TextColumn("Tier", disabled=True),
            "Service": st.column_config.TextColumn("Service", disabled=True),
            "Billing": st.column_config.TextColumn("Billing", disabled=True),
            "Qty": st.column_config.NumberColumn("Qty", min_value=0, step=1),
            "Maintenance": st.column_config.CheckboxColumn("Maintenance"),
            "Override Price": st.column_config.NumberColumn("Override Price", min_value=0, format="$%.2f"),
        },
        hide_index=True,
        key="line_editor"
    )

    selections = []
    for _, row in edited_df.iterrows():
        override = row['Override Price']
        selections.append({
            'lineId': row['lineId'],
            'selected': bool(row['Select']),
            'quantity': float(row['Qty']) if pd.notna(row['Qty']) else 0.0,
            'includeMaintenance': bool(row['Maintenance']),
            'overridePrice': float(override) if pd.notna(override) else None,
        })

    payload = {
        'clientSize': segment,
        'pricePoint': price_tier,
        'selections': selections,
        'quoteDetails': {k: v for k, v in quote_details.items() if v},
    }

    try:
        result = service.calculate(payload)
    except PricingError as e:
        st.error(str(e))
        st.stop()

    totals = result.totals
    m1, m2, m3, m4 = st.columns(4)
    m1.metric("Monthly", f"${totals.monthly_subtotal:,.2f}")
    m2.metric("One-time", f"${totals.one_time_subtotal:,.2f}")
    m3.metric("Month One", f"${totals.grand_total_month_one:,.2f}")
    m4.metric("Ongoing Monthly", f"${totals.ongoing_monthly:,.2f}")
    if totals.maintenance_subtotal is not None:
        st.caption(f"**Maintenance:** ${totals.maintenance_subtotal:,.2f}")

    for warning in result.warnings:
        st.warning(warning)

    btn_col1, btn_col2 = st.columns(2)
    with btn_col1:
        if st.button("📥 Prepare Excel", use_container_width=True):
            try:
                exported = service.export(payload, fmt="xlsx")
                st.download_button("Download .xlsx", data=exported.data, file_name=exported.filename,
                                   mime=exported.content_type, use_container_width=True)
            except PricingError as e:
                st.error(str(e))
    with btn_col2:
        if st.button("📥 Prepare CSV", use_container_width=True):
            try:
                exported = service.export(payload, fmt="csv")
                st.download_button("Download .csv", data=exported.data, file_name=exported.filename,
                                   mime=exported.content_type, use_container_width=True)
            except PricingError as e:
                st.error(str(e))

    with st.expander("📊 View Detailed Pricing Breakdown"):
        display_data = []
        for line in result.lines:
            if not line.selected:
                continue
            display_data.append({
                'Service': line.service,
                'Type': line.type,
                'Qty': line.quantity,
                'Unit Price': f"${line.effective_unit_price:,.2f}",
                'Line Total': f"${line.line_total:,.2f}",
                'Maintenance': f"${line.maintenance_total:,.2f}",
            })
        st.dataframe(pd.DataFrame(display_data), use_container_width=True, hide_index=True)
        st.code(result.get_trace_text(), language=None)


# ============================================================================
# TAB 2: CATALOG
# ============================================================================
with tab2:
    st.subheader("📚 Catalog")
    search_term = st.text_input("Search Catalog", placeholder="Service or tier...", label_visibility="collapsed")

    rows = []
    for line in metadata.line_items:
        band = line.rate_bands.get(segment) or {}
        row = {'Row': line.row, 'Tier': line.tier, 'Service': line.service, 'Billing': line.billing,
               'Charge': line.charge_type}
        for point, value in band.items():
            row[point.title()] = value
        rows.append(row)
    catalog_df = pd.DataFrame(rows)
    if search_term and not catalog_df.empty:
        mask = (
            catalog_df['Service'].str.contains(search_term, case=False, na=False) |
            catalog_df['Tier'].str.contains(search_term, case=False, na=False)
        )
        catalog_df = catalog_df[mask]

    st.dataframe(catalog_df, use_container_width=True, height=500, hide_index=True)
    st.caption(f"Lines: {len(metadata.line_items):,} | Segment: {segment}")


# ============================================================================
# TAB 3: BLUEPRINT
# ============================================================================
with tab3:
    st.subheader("🧩 Blueprint")
    info = boot.workbook_info or {}
    merged = info.get("blueprintMerged")
    if merged:
        st.caption(merged.get("metadata", {}).get("notes") or "")
        st.dataframe(pd.DataFrame([{
            'ID': s.get('id'),
            'Row': s.get('sourceRow'),
            'Tier': s.get('tier'),
            'Name': s.get('name'),
            'Billing': s.get('billingCadence'),
            'Charge': s.get('chargeType'),
        } for s in merged.get("services", [])]), use_container_width=True, hide_index=True)
    else:
        st.info("No blueprint generated yet.")

    if st.button("🔁 Re-run Analysis", type="secondary"):
        with st.spinner("Analyzing..."):
            outcome = service.reanalyze()
            if outcome.error:
                st.warning(outcome.error)
            st.rerun()


# ============================================================================
# TAB 4: SYSTEM INFO
# ============================================================================
with tab4:
    st.header("System Status")
    c1, c2, c3 = st.columns(3)
    c1.metric("Mode", metadata.mode)
    c2.metric("Lines", f"{len(metadata.line_items):,}")
    c3.metric("AI Analysis", "On" if service.ai_enabled else "Off")
    st.json(boot.mapping.to_dict(), expanded=False)
