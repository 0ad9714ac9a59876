import pandas as pd
import streamlit as st

from collection_example import EMAILS, USERS
from join_config import get_settings
from join_engine import BUILD_SIDES, JoinError, RecordSource, field_key, join, pairs_pretty, pairs_to_csv, pairs_to_dicts
from join_logging import setup_logging

settings = get_settings()
setup_logging(settings.log_level, settings.log_format)

st.set_page_config(page_title="Collection Join Runner", page_icon="🔗", layout="wide")

if "users" not in st.session_state:
    st.session_state.users = pd.DataFrame(USERS.to_dicts())
if "emails" not in st.session_state:
    st.session_state.emails = pd.DataFrame(EMAILS.to_dicts())

st.title("🔗 Collection Join Runner")
st.write(
    "Joins two in-memory collections on equal keys. Every left record is paired with every right "
    "record sharing its key; output follows the left order, then the right order."
)

# Inputs
col1, col2 = st.columns([1, 1], gap="large")

with col1:
    st.subheader("Left: Users")
    users_df = st.data_editor(st.session_state.users, num_rows="dynamic", use_container_width=True, key="users_editor")
    left_field = st.selectbox("Left key field", list(users_df.columns), index=0)

with col2:
    st.subheader("Right: EMails")
    emails_df = st.data_editor(st.session_state.emails, num_rows="dynamic", use_container_width=True, key="emails_editor")
    right_field = st.selectbox("Right key field", list(emails_df.columns), index=0)

build_side = st.radio("Build side", BUILD_SIDES, index=BUILD_SIDES.index(settings.build_side), horizontal=True)

# Run
if st.button("▶️ Run", type="primary"):
    try:
        left = RecordSource.from_records("Users", users_df.to_dict("records"))
        right = RecordSource.from_records("EMails", emails_df.to_dict("records"))
        result = join(left, right, field_key(left_field), field_key(right_field), build_side)
        st.success(f"Join produced {len(result)} pairs.")

        tabs = st.tabs(["Result Table", "Result Text", "Details"])
        with tabs[0]:
            if result:
                st.table(pairs_to_dicts(result, "Users", "EMails"))
                csv = pairs_to_csv(result, "Users", "EMails")
                st.download_button("Download CSV", data=csv, file_name="result.csv", mime="text/csv")
            else:
                st.info("Empty result set.")
        with tabs[1]:
            st.code("\n".join(f"Result = {p}" for p in result) or "(no pairs)", language="text")
            if result:
                st.code(pairs_pretty(result, "Users", "EMails", settings.display_max_width), language="text")
        with tabs[2]:
            st.markdown(f"**Condition**: `Users.{left_field} = EMails.{right_field}`")
            st.markdown(f"**Build side**: `{build_side}`")
            for src in (left, right):
                st.markdown(f"- `{src.name}`: shape = {src.shape}, records = {len(src)}")

    except JoinError as e:
        st.error(f"{type(e).__name__}: {e}")
    except Exception as e:
        st.exception(e)
else:
    st.info("Edit the collections, pick the key fields, then click **Run**.")
