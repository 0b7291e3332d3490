"""UI subpackage - Streamlit quote builder."""
