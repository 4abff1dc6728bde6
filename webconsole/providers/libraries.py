import json

from .base_provider import PageResourceProvider


class JQueryProvider(PageResourceProvider):
    NAME = "jquery"
    PRIORITY = 100

    def page_resources(self, connection):
        return [self.script(self.cdn("jquery@3.7.1/dist/jquery.min.js"),
                            provides=['jquery'])]


class JQueryUiProvider(PageResourceProvider):
    NAME = "jquery-ui"
    PRIORITY = 90

    def page_resources(self, connection):
        return [
            self.style(self.cdn("jquery-ui@1.13.2/dist/themes/base/jquery-ui.min.css")),
            self.script(self.cdn("jquery-ui@1.13.2/dist/jquery-ui.min.js"),
                        provides=['jquery-ui'], requires=['jquery']),
        ]


class GridstackProvider(PageResourceProvider):
    NAME = "gridstack"

    def page_resources(self, connection):
        return [
            self.style(self.cdn("gridstack@10.3.1/dist/gridstack.min.css")),
            self.script(self.cdn("gridstack@10.3.1/dist/gridstack-all.js"),
                        provides=['gridstack'], requires=['jquery', 'jquery-ui']),
        ]


class DatatablesProvider(PageResourceProvider):
    NAME = "datatables"

    LANGUAGE = {
        'en': {'sLengthAll': 'all'},
        'de': {'sLengthAll': 'alle', 'sSearch': 'Suchen:'},
    }

    def page_resources(self, connection):
        language = self.LANGUAGE.get(connection.locale.split('-')[0], self.LANGUAGE['en'])
        setup = ("$.extend($.fn.dataTable.defaults.oLanguage, "
                 f"{json.dumps(language, sort_keys=True)});\n")
        return [
            self.style(self.cdn("datatables.net-dt@2.0.8/css/dataTables.dataTables.min.css")),
            self.script(self.cdn("datatables.net@2.0.8/js/dataTables.min.js"),
                        provides=['datatables.net'], requires=['jquery']),
            self.script(self.cdn("datatables.net-plugins@2.0.8/api/processing().js"),
                        requires=['datatables.net']),
            self.script(source=setup, requires=['datatables.net']),
        ]


class ChartJsProvider(PageResourceProvider):
    NAME = "chart.js"

    def page_resources(self, connection):
        return [self.script(self.cdn("chart.js@4.4.3/dist/chart.umd.js"),
                            provides=['chart.js'])]


class MarkdownItProvider(PageResourceProvider):
    NAME = "markdown-it"

    PLUGINS = ("abbr", "container", "deflist", "footnote", "ins", "mark", "sub", "sup")

    def page_resources(self, connection):
        resources = [self.script(self.cdn("markdown-it@14.1.0/dist/markdown-it.min.js"),
                                 provides=['markdown-it'])]
        for plugin in self.PLUGINS:
            resources.append(self.script(
                self.cdn(f"markdown-it-{plugin}/dist/markdown-it-{plugin}.min.js"),
                provides=[f"markdown-it-{plugin}"], requires=['markdown-it']))
        return resources
