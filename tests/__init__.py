# SPDX-License-Identifier: Apache-2.0
"""
GraphRAG vector store tests.

Core type tests need no engine; store tests run against the embedded Qdrant
engine shipped with qdrant-client.
"""
