"""Link identity and field merge primitives shared by importers and exporters"""
